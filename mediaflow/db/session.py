"""SQLAlchemy engine and session management."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.config import Settings
from .base import Base


def build_engine(database_url: str) -> Engine:
    """Create an engine for the configured database.

    SQLite connections are shared across worker threads, and an in-memory
    database is pinned to a single connection so every session sees the same data.
    """

    if not database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    if database_url.startswith("sqlite"):
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory whose objects stay readable after commit."""

    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def engine_from_settings(settings: Settings) -> Engine:
    return build_engine(settings.database_url)


def init_db(engine: Engine) -> None:
    """Create tables for all registered models if they do not exist."""

    # Import models to ensure metadata is populated before create_all.
    from .. import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
