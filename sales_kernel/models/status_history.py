"""
Module: sales_kernel.models.status_history
Responsibility: ORM persistence for the append-only sale status history,
    one row per accepted status change, chained per sale by hash.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are append-only: ORM UPDATE and DELETE raise
      ImmutabilityViolationError.  Only the administrative purge removes
      rows, through a bulk statement that bypasses the ORM unit of work.
    - ``seq`` is globally unique and monotonically increasing, allocated by
      SequenceService inside the writing transaction, so history order
      equals commit order.
    - hash = H(sale_id | seq | track | from | to | user | notes | prev_hash),
      with prev_hash the hash of the previous entry of the same sale.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a mismatch.

Audit relevance:
    This table IS the audit trail of a sale.  Replaying its entries per
    track reproduces the sale's current status fields.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from sales_kernel.db.base import Base, UUIDString
from sales_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from sales_kernel.domain.dtos import StatusHistoryEntry


class StatusHistoryModel(Base):
    """
    One status change of one sale.

    Contract:
        Append-only.  ``from_status`` is the empty string for the entry
        written when the sale is created.

    Non-goals:
        - This model does NOT compute the hash; AuditLog does.
    """

    __tablename__ = "sales_status_history"

    __table_args__ = (
        Index("idx_status_history_sale", "sale_id", "seq"),
        Index("idx_status_history_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )

    # operational | financial | installments
    track: Mapped[str] = mapped_column(String(20), nullable=False)

    from_status: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StatusHistory #{self.seq} sale={self.sale_id} {self.track} "
            f"{self.from_status!r}->{self.to_status!r}>"
        )

    def to_dto(self) -> StatusHistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        from sales_kernel.domain.dtos import StatusHistoryEntry
        from sales_kernel.domain.statuses import StatusTrack

        return StatusHistoryEntry(
            id=self.id,
            sale_id=self.sale_id,
            seq=self.seq,
            track=StatusTrack(self.track),
            from_status=self.from_status,
            to_status=self.to_status,
            user_id=self.user_id,
            created_at=self.created_at,
            hash=self.hash,
            prev_hash=self.prev_hash,
            notes=self.notes,
        )


@event.listens_for(StatusHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to status history entries."""
    raise ImmutabilityViolationError(
        entity_type="StatusHistory",
        entity_id=str(target.id),
        reason="Status history is append-only -- cannot modify",
    )


@event.listens_for(StatusHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of status history entries."""
    raise ImmutabilityViolationError(
        entity_type="StatusHistory",
        entity_id=str(target.id),
        reason="Status history is append-only -- cannot delete",
    )
