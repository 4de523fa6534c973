"""Database models for the race predictor."""

from race_predictor.models.database import Base, init_db, make_engine, make_session_factory
from race_predictor.models.settings import StoredBlob

__all__ = [
    "Base",
    "init_db",
    "make_engine",
    "make_session_factory",
    "StoredBlob",
]
