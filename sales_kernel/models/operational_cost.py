"""
Module: sales_kernel.models.operational_cost
Responsibility: ORM persistence for operational costs incurred while a
    sale is executed.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``amount`` is an exact Decimal.  Positivity is validated by the
      orchestrator before insert.

Audit relevance:
    Costs feed ``net_result = total_amount - sum(costs)``.  They take no
    part in either state machine.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sales_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from sales_kernel.domain.dtos import OperationalCostView


class OperationalCostModel(TrackedBase):
    __tablename__ = "sale_operational_costs"

    __table_args__ = (Index("idx_sale_operational_costs_sale", "sale_id"),)

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    cost_type_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("cost_types.id"), nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    cost_date: Mapped[date] = mapped_column("date", nullable=False)

    payment_date: Mapped[date | None] = mapped_column(nullable=True)

    responsible_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    service_provider_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("service_providers.id"), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<OperationalCost {self.amount} sale={self.sale_id}>"

    def to_dto(self) -> OperationalCostView:
        """Convert ORM model to frozen domain DTO."""
        from sales_kernel.domain.dtos import OperationalCostView

        return OperationalCostView(
            id=self.id,
            sale_id=self.sale_id,
            description=self.description,
            amount=self.amount,
            cost_date=self.cost_date,
            responsible_id=self.responsible_id,
            cost_type_id=self.cost_type_id,
            payment_date=self.payment_date,
            service_provider_id=self.service_provider_id,
            notes=self.notes,
        )
