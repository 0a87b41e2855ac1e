# database.py - Engine and session management (PostgreSQL in production, SQLite locally)
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_URL = "sqlite:///./data/reviews.db"

# Import settings - but handle circular import for Alembic
try:
    from settings import get_settings
    DATABASE_URL = get_settings().DATABASE_URL
except ImportError:
    DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE_URL)


def normalize_database_url(url: str) -> str:
    """Accept Render-style postgres:// URLs; anchor the default SQLite file next to this module."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url == DEFAULT_SQLITE_URL:
        data_dir = Path(__file__).resolve().parent / "data"
        data_dir.mkdir(exist_ok=True)
        url = f"sqlite:///{data_dir}/reviews.db"
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite gets cross-thread access and enforced foreign keys."""
    connect_args = {}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False  # Needed for SQLite with FastAPI

    engine = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,  # Handle stale connections for PostgreSQL
        **kwargs
    )
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


DATABASE_URL = normalize_database_url(DATABASE_URL)
engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request (background jobs)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables for a fresh database"""
    import db_models  # noqa: F401  registers the models on Base.metadata
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")


def safe_commit(db: Session) -> None:
    """
    Commit, rolling back before re-raising on failure.

    Raises:
        SQLAlchemyError: the original commit failure, after rollback
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database commit failed, rolling back: {e}")
        db.rollback()
        raise
