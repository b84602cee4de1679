"""
Module: sales_kernel.db.types
Responsibility: Column types and helpers for money and calendar dates.
    Centralizes precision and rounding so every model and service uses the
    same definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  Money refuses float binds; all amounts are Decimal.
    - round_money() is the ONLY sanctioned rounding function for amounts.
    - Calendar dates are persisted as 'YYYY-MM-DD' text, never timestamps.

Failure modes:
    - TypeError on binding a float (or any non-Decimal) to a Money column.
    - ValueError on binding a malformed date string to an ISODate column.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 2

# Column shape of Money on PostgreSQL: NUMERIC(38, 9).
MONEY_PRECISION = 38
MONEY_SCALE = 9
MAX_MONEY_INTEGER_DIGITS = MONEY_PRECISION - MONEY_SCALE
DEFAULT_ROUNDING = ROUND_HALF_EVEN


class Money(TypeDecorator):
    """
    Exact decimal amount.

    PostgreSQL stores NUMERIC(38, 9).  SQLite has no exact numeric storage
    (NUMERIC affinity degrades to REAL), so the canonical string form is
    stored there instead and parsed back into a Decimal on load.
    """

    impl = Numeric(MONEY_PRECISION, MONEY_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, MONEY_SCALE, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            raise TypeError(
                f"Money columns accept Decimal only, got {type(value).__name__}"
            )
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class ISODate(TypeDecorator):
    """Calendar date stored as 'YYYY-MM-DD' text."""

    impl = String(10)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return parse_iso_date(value).isoformat()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return date.fromisoformat(value)


def parse_iso_date(value: Any) -> date:
    """
    Normalize a calendar date.

    Accepts a ``date``, a ``datetime`` (its date part) or an ISO string.
    Strings carrying a time component ('2024-03-15T00:00:00.000Z') are cut
    at the 'T' so the calendar day the caller sent is kept verbatim.

    Raises:
        ValueError: If the value is not a recognizable calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip().split("T", 1)[0]
        return date.fromisoformat(text)
    raise ValueError(f"Not a calendar date: {value!r}")


def money_from_str(value: str) -> Decimal:
    """
    Parse a decimal amount sent as text ('1200.00').

    Raises:
        ValueError: If the text is not a finite decimal number.
    """
    try:
        amount = Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return amount


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for amounts in the
    kernel.  Default mode is banker's rounding (ROUND_HALF_EVEN).
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)
