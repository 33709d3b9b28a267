"""
Database Connection and Session Management
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.infrastructure.storage.models import Base

logger = logging.getLogger(__name__)

_session_factory: Optional[sessionmaker] = None


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite URLs get `check_same_thread=False` so FastAPI's threadpool and
    the worker can share the engine; in-memory SQLite uses a single shared
    connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine, create_tables: bool = True) -> sessionmaker:
    """Session factory bound to `engine`; creates missing tables by default."""
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_session_factory() -> sessionmaker:
    """Process-wide session factory built from DATABASE_URL"""
    global _session_factory
    if _session_factory is None:
        settings = get_settings()
        _session_factory = create_session_factory(create_db_engine(settings.database_url))
        logger.info(f"Database initialized: {settings.database_url.split('@')[-1]}")
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope: commit on success, rollback on any error.

    Usage:
        with session_scope(factory) as db:
            db.add(row)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
