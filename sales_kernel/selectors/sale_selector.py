"""
Module: sales_kernel.selectors.sale_selector
Responsibility: Read-side queries over sales: installment schedules with the
    derived overdue status, payment receipts, operational costs, the
    financial summary (collected, outstanding, net result) and listings by
    status.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - 'overdue' is computed from the injected clock's date at query time
      and never read from storage.
    - net_result = total_amount - sum(operational costs), exact Decimal.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from sales_kernel.domain.dtos import (
    FinancialSummary,
    InstallmentView,
    OperationalCostView,
    PaymentReceiptView,
    SaleSnapshot,
)
from sales_kernel.domain.statuses import InstallmentStatus
from sales_kernel.exceptions import SaleNotFoundError
from sales_kernel.models.installment import InstallmentModel, PaymentReceiptModel
from sales_kernel.models.operational_cost import OperationalCostModel
from sales_kernel.models.sale import SaleModel, SaleServiceProviderModel
from sales_kernel.selectors.base import BaseSelector


class SaleSelector(BaseSelector[SaleModel]):
    """Read-only queries for sales and their ledgers."""

    def _sale(self, sale_id: UUID) -> SaleModel:
        sale = self.session.get(SaleModel, sale_id)
        if sale is None:
            raise SaleNotFoundError(str(sale_id))
        return sale

    def installments(
        self, sale_id: UUID, today: date | None = None
    ) -> tuple[InstallmentView, ...]:
        """Installments ordered by number, with effective status."""
        today = today or self.clock.today()
        rows = self.session.execute(
            select(InstallmentModel)
            .where(InstallmentModel.sale_id == sale_id)
            .order_by(InstallmentModel.installment_number)
        ).scalars()
        return tuple(row.to_dto(today) for row in rows)

    def overdue_installments(
        self, today: date | None = None
    ) -> tuple[InstallmentView, ...]:
        """Pending installments past due across all sales, oldest first."""
        today = today or self.clock.today()
        rows = self.session.execute(
            select(InstallmentModel)
            .where(InstallmentModel.status == InstallmentStatus.PENDING.value)
            .where(InstallmentModel.due_date < today)
            .order_by(InstallmentModel.due_date, InstallmentModel.installment_number)
        ).scalars()
        return tuple(row.to_dto(today) for row in rows)

    def receipts(self, installment_id: UUID) -> tuple[PaymentReceiptView, ...]:
        rows = self.session.execute(
            select(PaymentReceiptModel)
            .where(PaymentReceiptModel.installment_id == installment_id)
            .order_by(PaymentReceiptModel.confirmation_date)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def operational_costs(self, sale_id: UUID) -> tuple[OperationalCostView, ...]:
        rows = self.session.execute(
            select(OperationalCostModel)
            .where(OperationalCostModel.sale_id == sale_id)
            .order_by(OperationalCostModel.cost_date, OperationalCostModel.created_at)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def financial_summary(
        self, sale_id: UUID, today: date | None = None
    ) -> FinancialSummary:
        """
        Collection position and net result of a sale.

        Raises:
            SaleNotFoundError: Unknown sale id.
        """
        sale = self._sale(sale_id)
        installments = self.installments(sale_id, today)
        costs = self.operational_costs(sale_id)

        paid = [i for i in installments if i.status == InstallmentStatus.PAID.value]
        paid_amount = sum((i.amount for i in paid), Decimal("0"))
        costs_total = sum((c.amount for c in costs), Decimal("0"))

        return FinancialSummary(
            sale_id=sale.id,
            total_amount=sale.total_amount,
            installment_count=len(installments),
            paid_count=len(paid),
            overdue_count=sum(
                1 for i in installments if i.status == InstallmentStatus.OVERDUE.value
            ),
            paid_amount=paid_amount,
            outstanding_amount=sum(
                (i.amount for i in installments if i.status != InstallmentStatus.PAID.value),
                Decimal("0"),
            ),
            costs_total=costs_total,
            net_result=sale.total_amount - costs_total,
            installments=installments,
        )

    def sales_by_status(
        self,
        status: str | None = None,
        financial_status: str | None = None,
        seller_id: UUID | None = None,
    ) -> tuple[SaleSnapshot, ...]:
        """Sales filtered by either status field and seller, by order number."""
        stmt = select(SaleModel).order_by(SaleModel.order_number)
        if status is not None:
            stmt = stmt.where(SaleModel.status == str(getattr(status, "value", status)))
        if financial_status is not None:
            stmt = stmt.where(
                SaleModel.financial_status
                == str(getattr(financial_status, "value", financial_status))
            )
        if seller_id is not None:
            stmt = stmt.where(SaleModel.seller_id == seller_id)
        sales = self.session.execute(stmt).scalars().all()
        providers = self._provider_ids([sale.id for sale in sales])
        return tuple(sale.to_dto(providers.get(sale.id, ())) for sale in sales)

    def _provider_ids(self, sale_ids: list[UUID]) -> dict[UUID, list[UUID]]:
        """Linked provider ids per sale, sorted, in one query."""
        if not sale_ids:
            return {}
        rows = self.session.execute(
            select(
                SaleServiceProviderModel.sale_id,
                SaleServiceProviderModel.service_provider_id,
            )
            .where(SaleServiceProviderModel.sale_id.in_(sale_ids))
            .order_by(SaleServiceProviderModel.service_provider_id)
        )
        providers: dict[UUID, list[UUID]] = defaultdict(list)
        for sale_id, provider_id in rows:
            providers[sale_id].append(provider_id)
        return providers
