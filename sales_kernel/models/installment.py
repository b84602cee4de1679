"""
Module: sales_kernel.models.installment
Responsibility: ORM persistence for sale installments and the payment
    receipts created when an installment is confirmed paid.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``installment_number`` is unique per sale.
    - Stored ``status`` is 'pending' or 'paid'.  'overdue' is derived at
      read time and never written.
    - ``due_date`` and ``payment_date`` are calendar dates stored as
      'YYYY-MM-DD' text (ISODate).
    - Installments carry an optimistic ``version`` counter.
    - Receipts are never updated through the ORM.

Failure modes:
    - IntegrityError on duplicate (sale_id, installment_number).
    - ImmutabilityViolationError on receipt UPDATE.

Audit relevance:
    A receipt records who confirmed a payment and when.  Receipts are only
    removed together with their installments (ledger replacement or purge).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from sales_kernel.db.base import Base, TrackedBase, UUIDString
from sales_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from sales_kernel.domain.dtos import InstallmentView, PaymentReceiptView


class InstallmentModel(TrackedBase):
    """One scheduled payment of a sale."""

    __tablename__ = "sale_installments"

    __table_args__ = (
        UniqueConstraint(
            "sale_id", "installment_number", name="uq_sale_installment_number"
        ),
        CheckConstraint("installment_number >= 1", name="ck_installment_number"),
        CheckConstraint("status IN ('pending','paid')", name="ck_installment_status"),
        Index("idx_sale_installments_sale", "sale_id"),
        Index("idx_sale_installments_due", "status", "due_date"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )

    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    due_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    payment_date: Mapped[date | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"

    def __repr__(self) -> str:
        return (
            f"<Installment {self.installment_number} of sale {self.sale_id} "
            f"{self.amount} due {self.due_date} {self.status}>"
        )

    def to_dto(self, today: date) -> InstallmentView:
        """Convert ORM model to frozen domain DTO with the effective status."""
        from sales_kernel.domain.dtos import InstallmentView
        from sales_kernel.domain.statuses import effective_installment_status

        return InstallmentView(
            id=self.id,
            sale_id=self.sale_id,
            installment_number=self.installment_number,
            amount=self.amount,
            due_date=self.due_date,
            status=effective_installment_status(self.status, self.due_date, today).value,
            payment_date=self.payment_date,
            notes=self.notes,
        )


class PaymentReceiptModel(Base):
    """Evidence of an installment payment, created on confirmation."""

    __tablename__ = "sale_payment_receipts"

    __table_args__ = (
        Index("idx_sale_payment_receipts_installment", "installment_id"),
    )

    installment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sale_installments.id"), nullable=False
    )

    # 'manual', 'link' or 'split_payment'; kept as free text so new kinds need no migration.
    receipt_type: Mapped[str] = mapped_column(String(30), nullable=False)

    url: Mapped[str | None] = mapped_column(Text, nullable=True)

    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    confirmed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    confirmation_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentReceipt {self.receipt_type} installment={self.installment_id}>"

    def to_dto(self) -> PaymentReceiptView:
        """Convert ORM model to frozen domain DTO."""
        from sales_kernel.domain.dtos import PaymentReceiptView

        return PaymentReceiptView(
            id=self.id,
            installment_id=self.installment_id,
            receipt_type=self.receipt_type,
            confirmed_by=self.confirmed_by,
            confirmation_date=self.confirmation_date,
            url=self.url,
            data=self.data,
            notes=self.notes,
        )


@event.listens_for(PaymentReceiptModel, "before_update")
def prevent_receipt_update(mapper, connection, target):
    """Prevent updates to payment receipts."""
    raise ImmutabilityViolationError(
        entity_type="PaymentReceipt",
        entity_id=str(target.id),
        reason="Payment receipts are immutable -- cannot modify",
    )
