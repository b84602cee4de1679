"""
Module: sales_kernel.db.base
Responsibility: The declarative base every sales model inherits, and the
    ``TrackedBase`` mixin recording who created and last touched a row.
Architecture position: Kernel > DB.  Imports only db/types.py.

Invariants enforced:
    - Every row is keyed by a uuid4 stored as 36-character text, identical
      on SQLite and PostgreSQL.
    - ``Decimal`` annotations become ``Money`` (exact, never float) and
      ``date`` annotations become ``ISODate`` (no timezone to drift).
    - Timestamps are timezone-aware.
    - Tracked rows always name their creator; ``updated_by_id`` stays NULL
      until the first change.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from sales_kernel.db.types import ISODate, Money


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Money(),
        date: ISODate(),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Rows with creation/update timestamps and acting user ids."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


UUID = PyUUID
