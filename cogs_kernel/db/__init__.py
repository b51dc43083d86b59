"""Database layer - engine, base classes, column types, immutability."""

from cogs_kernel.db.base import UUID, Base, FixedDecimal, UTCDateTime, UUIDString
from cogs_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "FixedDecimal",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
