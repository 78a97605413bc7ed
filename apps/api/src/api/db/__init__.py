"""Database module for the API.

Provides the SQLAlchemy click model, async session management and the
durable click store.
"""

from api.db.click_store import SQLClickStore
from api.db.database import (
    Base,
    async_session,
    init_db,
)
from api.db.models import CallClick

__all__ = [
    "Base",
    "CallClick",
    "SQLClickStore",
    "async_session",
    "init_db",
]
