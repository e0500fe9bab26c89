"""
Database module for LicenseGate.

Provides async SQLAlchemy support with PostgreSQL and SQLite.
"""
from __future__ import annotations

from licensegate.db.database import (
    get_db,
    init_db,
    close_db,
    AsyncSessionLocal,
)
from licensegate.db.models import Store, Event

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "AsyncSessionLocal",
    "Store",
    "Event",
]
