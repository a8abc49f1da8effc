"""Database layer - engine, declarative base and immutability listeners."""

from points_kernel.db.base import UUID, Base, UUIDString
from points_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_settings,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "init_engine_from_settings",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
]
