from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from salesdesk.config.settings import settings

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _connect_args(database_url: str) -> dict:
    if "sqlite" in database_url:
        # sqlite3 "timeout" bounds how long a write waits on a locked database
        return {"check_same_thread": False, "timeout": settings.store_timeout_sec}
    if database_url.startswith("postgresql"):
        timeout_ms = int(settings.store_timeout_sec * 1000)
        return {"options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}"}
    return {}


def _get_engine() -> Engine:
    global _engine
    if _engine is None:
        logger.info(f"Initializing database engine: {settings.database_url}")
        _engine = create_engine(
            settings.database_url,
            connect_args=_connect_args(settings.database_url),
            echo=False,
        )
    return _engine


def _get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _session_factory


def init_db() -> None:
    """Create all tables that do not exist yet."""
    from salesdesk.db.models import Base

    Base.metadata.create_all(bind=_get_engine())


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager."""
    logger.debug("Creating new database session")
    session = _get_session_factory()()
    try:
        yield session
        session.commit()
        logger.debug("Database session committed")
    except Exception as e:
        logger.error(f"Database session error, rolling back: {e}")
        session.rollback()
        raise
    finally:
        session.close()
        logger.debug("Database session closed")
