"""Database layer - engine, base classes, column types, and append-only guards."""

from billing_kernel.db.base import UUID, Base, SequentialKey, TrackedBase, UTCDateTime, UUIDString
from billing_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    run_in_transaction,
    session_scope,
)

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "run_in_transaction",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "SequentialKey",
    "UUID",
]
