from .base import Base
from .session import build_engine, build_session_factory, engine_from_settings, init_db

__all__ = ["Base", "build_engine", "build_session_factory", "engine_from_settings", "init_db"]
