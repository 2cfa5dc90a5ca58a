"""
Database utilities and connection management.

WHAT: SQLite/SQLAlchemy setup for the negotiation record store
WHY: Snapshots and decisions must survive restarts and observer reconnects
HOW: SQLAlchemy sync engine with WAL mode, session factory, context-managed sessions
"""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine with the pragmas the store relies on.

    In-memory SQLite URLs share one connection so every session sees the same data.
    """
    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs.pop("connect_args")

    new_engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable WAL mode and FK constraints."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False
)

# Base for models
Base = declarative_base()


@contextmanager
def get_db(session_factory: sessionmaker | None = None):
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            db.add(...)

    Yields:
        Session: SQLAlchemy session, committed on success, rolled back on error
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database() -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": settings.DATABASE_URL, "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": settings.DATABASE_URL, "error": str(e)}


def init_db(target: Engine | None = None):
    """Create all tables."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=target or engine)
    logger.info("Database initialized")


def close_db():
    """Close database connections."""
    engine.dispose()
    logger.info("Database connections closed")
