from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from autorecon.config import settings
from autorecon.exceptions import ConcurrentModification


class Base(DeclarativeBase):
    pass


def create_db_engine(url: str, echo: bool = False) -> Engine:
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url.endswith("://") or ":memory:" in url:
            # An in-memory database lives only as long as its one connection
            options["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **options)
    return create_engine(url, echo=echo, pool_pre_ping=True, pool_recycle=3600)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
SessionLocal = create_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    import autorecon.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def next_sequence(db: Session, column) -> int:
    return (db.scalar(select(func.coalesce(func.max(column), 0))) or 0) + 1


@contextmanager
def unit_of_work(db: Session, label: str, entity_id: str):
    """Commit everything done inside the block, or nothing at all.

    Versioned rows are updated with ``WHERE version = <version read>``; when
    another session committed first that UPDATE matches no row and the
    commit is refused as ConcurrentModification.
    """
    try:
        yield
        db.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        raise ConcurrentModification(
            f"{label} {entity_id} was changed by a concurrent writer; reload and retry",
            {"entity_id": entity_id},
        ) from exc
    except Exception:
        db.rollback()
        raise
