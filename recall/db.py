"""
Database initialization helpers.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import recall.config as config
from recall.models import Base


class DB:
    """Database state holder (avoids global scoping issues)."""

    engine = None
    SessionLocal = None


def init_db(database_url: Optional[str] = None) -> None:
    """Initialize database connection and create tables."""
    url = database_url or config.DATABASE_URL

    config.logger.info("Connecting to database...")
    engine_kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    DB.engine = create_engine(url, **engine_kwargs)
    DB.SessionLocal = sessionmaker(bind=DB.engine)

    Base.metadata.create_all(DB.engine)

    config.logger.info("Database initialized")


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.SessionLocal = None
