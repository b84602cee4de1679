"""Database layer - engine, base classes, types."""

from sales_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from sales_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_config,
    init_engine_from_url,
    session_scope,
)
from sales_kernel.db.types import ISODate, Money, parse_iso_date, round_money

__all__ = [
    "init_engine_from_url",
    "init_engine_from_config",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "ISODate",
    "parse_iso_date",
    "round_money",
]
