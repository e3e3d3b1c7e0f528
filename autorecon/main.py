import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autorecon.api import api_router
from autorecon.config import settings
from autorecon.database import init_db
from autorecon.exceptions import AutoReconError
from autorecon.logging_middleware import LoggingMiddleware, configure_logging
from autorecon.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    init_db()
    logger.info("Settlement service started (base currency %s)", settings.BASE_CURRENCY)
    yield


app = FastAPI(
    title="AutoRecon Settlement Service",
    description="Settlement run lifecycle, aggregation and maker-checker approvals",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware - the back-office console is served separately
ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(AutoReconError)
async def autorecon_error_handler(request: Request, exc: AutoReconError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            detail=exc.message,
            context=jsonable_encoder(exc.details),
        ).model_dump(),
    )


# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": "AutoRecon Settlement Service",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
