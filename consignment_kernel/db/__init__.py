"""Database layer: declarative base, engine and session helpers."""

from consignment_kernel.db.base import Base, MoneyType, TrackedBase, UTCDateTime, UUIDString
from consignment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
)

__all__ = [
    "Base",
    "MoneyType",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "reset_engine",
]
