"""
Module: sales_kernel.models.sale
Responsibility: ORM persistence for the Sale aggregate root and its
    partner service provider links.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``total_amount`` is an exact Decimal (Money column), never float.
    - ``installments_count`` >= 1 (check constraint).  The non-negative
      total is validated by the orchestrator.
    - ``status`` and ``financial_status`` are restricted to their
      vocabularies (check constraints).  Transition legality is enforced by
      the workflow services, never by the model.
    - ``version`` is the optimistic concurrency counter (``version_id_col``):
      an UPDATE carrying a stale version affects zero rows and raises
      StaleDataError, which the orchestrator maps to OptimisticLockError.
    - ``order_number`` is unique.

Failure modes:
    - IntegrityError on duplicate order_number or a violated check.
    - StaleDataError on a concurrent modification.

Audit relevance:
    Every status change of a sale is mirrored by an entry in
    ``sales_status_history`` written in the same transaction.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from sales_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from sales_kernel.domain.dtos import SaleSnapshot


_OPERATIONAL_STATUSES = "('pending','in_progress','returned','corrected','completed','canceled')"
_FINANCIAL_STATUSES = "('pending','in_progress','completed','paid')"


class SaleModel(TrackedBase):
    """
    A sale tracked through its operational and financial lifecycles.

    The two status fields are plain strings; ``OperationalStatus`` and
    ``FinancialStatus`` in the domain layer name the allowed values.
    """

    __tablename__ = "sales"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_sales_order_number"),
        CheckConstraint("installments_count >= 1", name="ck_sales_installments_count"),
        CheckConstraint(
            f"status IN {_OPERATIONAL_STATUSES}", name="ck_sales_status"
        ),
        CheckConstraint(
            f"financial_status IN {_FINANCIAL_STATUSES}",
            name="ck_sales_financial_status",
        ),
        Index("idx_sales_status", "status"),
        Index("idx_sales_financial_status", "financial_status"),
        Index("idx_sales_seller", "seller_id"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)

    sale_date: Mapped[date] = mapped_column("date", nullable=False)

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("customers.id"), nullable=False
    )

    # The selling user; identity is owned by the caller, so no foreign key.
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    payment_method_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payment_methods.id"), nullable=False
    )

    service_type_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("service_types.id"), nullable=True
    )

    service_provider_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("service_providers.id"), nullable=True
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    installments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    financial_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )

    responsible_operational_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    responsible_financial_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Sale {self.order_number} status={self.status} "
            f"financial={self.financial_status} v{self.version}>"
        )

    def to_dto(self, service_provider_ids: Iterable[UUID] = ()) -> SaleSnapshot:
        """Convert ORM model to frozen domain DTO."""
        from sales_kernel.domain.dtos import SaleSnapshot

        return SaleSnapshot(
            id=self.id,
            order_number=self.order_number,
            sale_date=self.sale_date,
            customer_id=self.customer_id,
            seller_id=self.seller_id,
            payment_method_id=self.payment_method_id,
            service_type_id=self.service_type_id,
            service_provider_id=self.service_provider_id,
            total_amount=self.total_amount,
            installments_count=self.installments_count,
            status=self.status,
            financial_status=self.financial_status,
            version=self.version,
            notes=self.notes,
            return_reason=self.return_reason,
            responsible_operational_id=self.responsible_operational_id,
            responsible_financial_id=self.responsible_financial_id,
            service_provider_ids=tuple(service_provider_ids),
        )


class SaleServiceProviderModel(Base):
    """Partner service provider attached to a sale.

    Replaced as a set whenever an operational transition supplies
    provider ids.
    """

    __tablename__ = "sale_service_providers"

    __table_args__ = (
        UniqueConstraint(
            "sale_id", "service_provider_id", name="uq_sale_service_provider"
        ),
        Index("idx_sale_service_providers_sale", "sale_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )

    service_provider_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("service_providers.id"), nullable=False
    )

    def __repr__(self) -> str:
        return f"<SaleServiceProvider sale={self.sale_id} provider={self.service_provider_id}>"
