from fastapi import APIRouter

from autorecon.api.routes import settlement_runs, approvals, events

api_router = APIRouter()

api_router.include_router(settlement_runs.router, prefix="/settlement-runs", tags=["Settlement Runs"])
api_router.include_router(approvals.router, prefix="/approvals", tags=["Approvals"])
api_router.include_router(events.router, prefix="/events", tags=["Events"])
