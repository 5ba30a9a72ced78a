"""Database layer - engine, base classes and session scope."""

from expense_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from expense_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_tables",
    "session_scope",
    "Base",
    "UUID",
    "UTCDateTime",
    "UUIDString",
]
