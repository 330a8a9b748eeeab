"""
SQLAlchemy engine management for the record store.
"""

from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from ..config import get_settings

# Module-level engine instance (lazy-initialized)
_engine: Engine | None = None


def build_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url)


def get_engine() -> Engine:
    """Get the SQLAlchemy engine, creating it from settings if necessary."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def set_engine(engine: Engine) -> None:
    """Set a custom engine (for testing)."""
    global _engine
    _engine = engine


def reset_engine() -> None:
    """Reset the engine to None (for testing)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
