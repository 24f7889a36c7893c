"""Storage layer for metadata persistence.

This module provides:
- Base: SQLAlchemy declarative base for all models
- init_database: Schema management
"""

from calcfields.storage.base import Base, init_database, metadata_obj

__all__ = [
    "Base",
    "metadata_obj",
    "init_database",
]
