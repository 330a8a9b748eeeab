"""Record store backed by SQLAlchemy."""

from .database import CurationStore
from .db_engine import build_engine, get_engine, reset_engine, set_engine

__all__ = [
    'CurationStore',
    'build_engine',
    'get_engine',
    'reset_engine',
    'set_engine',
]
