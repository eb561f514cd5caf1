# booking_engine/database/__init__.py
import logging
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    """Create an engine with pool settings appropriate for the backend."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        connect_args={"connect_timeout": 10, "application_name": "booking_engine"},
    )


engine: Engine = build_engine(settings.get_database_url())

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db_pool_status() -> Dict[str, Any]:
    """Get current database pool statistics."""
    pool: Any = engine.pool
    status: Dict[str, Any] = {"class": type(pool).__name__}
    for attr in ("size", "checkedin", "checkedout", "overflow"):
        method = getattr(pool, attr, None)
        if callable(method):
            status[attr] = method()
    return status
