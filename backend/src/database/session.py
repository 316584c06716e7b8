"""
Database engine and session factory construction.

The engine and session factory are built once at process start (see
src.platform.container) and handed to request handlers through FastAPI
dependencies; nothing here is a module-level singleton.

Usage:
    engine = create_db_engine(settings.database_url)
    SessionLocal = create_session_factory(engine)
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """
    Normalize the database URL.

    Handles Render's postgres:// URL format by converting to postgresql://.
    """
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def create_db_engine(database_url: str) -> Engine:
    """
    Create the database engine.

    Uses connection pooling with sensible defaults for production:
    - pool_size: 5 connections
    - max_overflow: 10 additional connections under load
    - pool_pre_ping: Verify connections before use

    SQLite URLs (local development, tests) get a single shared connection.
    """
    database_url = normalize_database_url(database_url)

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,  # Verify connection health
            pool_recycle=1800,   # Recycle connections after 30 minutes
        )

    logger.info("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory bound to engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine
    )
