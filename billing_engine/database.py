"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from billing_engine.core.config import settings

logger = logging.getLogger(__name__)

_POSTGRES_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 5,
    # Fail fast when the pool is exhausted so the processor retries the webhook
    "pool_timeout": 2,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "connect_args": {
        "connect_timeout": 5,
        "options": "-c statement_timeout=15000",
        "application_name": "billing_engine",
    },
}


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Pick pool settings for the configured dialect."""
    if db_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return dict(_POSTGRES_POOL_KWARGS)


def build_engine(db_url: str) -> Engine:
    return create_engine(db_url, **_build_engine_kwargs(db_url))


engine: Engine = build_engine(settings.database_url)


@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


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


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return SQLAlchemy dialect name for the session's bind.

    Falls back to ``default`` when the bound engine cannot be resolved.
    """
    bind = session.get_bind()
    if bind is None:
        return default
    dialect = getattr(bind, "dialect", None)
    name = getattr(dialect, "name", None)
    return name or default


def ping(session: Session) -> bool:
    """Round-trip a trivial statement; used by the health endpoint."""
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Database ping failed: %s", exc)
        return False
    return True
