"""
InstallmentLedger -- persistence of a sale's installments and receipts.

Responsibility:
    Replaces a sale's installment set with a freshly amortized plan,
    confirms individual installment payments (creating the receipt in the
    same flush), attaches split-payment receipts to paid installments, and
    answers the "every installment paid" question that gates financial
    completion.

Architecture position:
    Kernel > Services -- imperative shell, called by SaleOrchestrator and
    FinancialWorkflow.  Consumes plans from domain.amortization.

Invariants enforced:
    - The installment set of a sale is replaced as a whole: existing rows
      and their receipts are deleted and the new set inserted in one flush.
    - Confirming a paid installment raises AlreadyPaidError and changes
      nothing: the first payment date and receipts are kept.
    - An installment may carry many receipts: the confirmation receipt plus
      one ``split_payment`` receipt per payment method added afterwards.
    - ``all_paid`` is false for a sale with no installments.
    - Installment status is only ever written as 'pending' or 'paid'.

Failure modes:
    - InstallmentNotFoundError for an unknown installment id.
    - AlreadyPaidError on a second confirmation.
    - InstallmentNotPaidError when splitting an unpaid installment.
    - ValidationError for an unreadable payment date.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sales_kernel.db.types import parse_iso_date
from sales_kernel.domain.amortization import InstallmentPlanLine
from sales_kernel.domain.clock import Clock
from sales_kernel.domain.dtos import ReceiptInput, SplitPaymentInput
from sales_kernel.domain.statuses import (
    InstallmentStatus,
    ReceiptType,
    effective_installment_status,
)
from sales_kernel.exceptions import (
    AlreadyPaidError,
    InstallmentNotFoundError,
    InstallmentNotPaidError,
    ValidationError,
)
from sales_kernel.logging_config import get_logger
from sales_kernel.models.catalog import PaymentMethodModel
from sales_kernel.models.installment import InstallmentModel, PaymentReceiptModel
from sales_kernel.services.base import BaseService

logger = get_logger("services.installment_ledger")


class InstallmentLedger(BaseService):
    """
    Service for a sale's installment rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT change the sale's financial status; financial completion
          is always an explicit transition.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def replace_all(
        self,
        sale_id: UUID,
        plan: Iterable[InstallmentPlanLine],
        actor_id: UUID,
    ) -> list[InstallmentModel]:
        """
        Replace every installment of a sale with ``plan``.

        Postconditions:
            - The sale has exactly the plan's installments, all pending.
            - Receipts of the removed installments are gone.
        """
        existing = self.installments(sale_id)
        removed_receipts = 0
        if existing:
            receipts = self.session.execute(
                select(PaymentReceiptModel).where(
                    PaymentReceiptModel.installment_id.in_([i.id for i in existing])
                )
            ).scalars().all()
            for receipt_row in receipts:
                self.session.delete(receipt_row)
            removed_receipts = len(receipts)
            # Receipts reference installments; remove them first.
            self.session.flush()
            for installment in existing:
                self.session.delete(installment)
            self.session.flush()
        removed = len(existing)

        rows = [
            InstallmentModel(
                sale_id=sale_id,
                installment_number=line.installment_number,
                amount=line.amount,
                due_date=line.due_date,
                status=InstallmentStatus.PENDING.value,
                created_by_id=actor_id,
            )
            for line in plan
        ]
        self.session.add_all(rows)
        self.session.flush()

        logger.info(
            "installments_replaced",
            extra={
                "sale_id": str(sale_id),
                "removed_count": removed,
                "removed_receipts": removed_receipts,
                "installment_count": len(rows),
            },
        )
        return rows

    def get(self, installment_id: UUID, *, for_update: bool = False) -> InstallmentModel:
        """
        Load an installment.

        Raises:
            InstallmentNotFoundError: If the id is unknown.
        """
        stmt = select(InstallmentModel).where(InstallmentModel.id == installment_id)
        if for_update:
            stmt = stmt.with_for_update()
        installment = self.session.execute(stmt).scalar_one_or_none()
        if installment is None:
            raise InstallmentNotFoundError(str(installment_id))
        return installment

    def confirm_payment(
        self,
        installment_id: UUID,
        actor_id: UUID,
        payment_date: Any,
        receipt: ReceiptInput | None = None,
    ) -> tuple[InstallmentModel, PaymentReceiptModel]:
        """
        Mark an installment paid and attach a receipt.

        ``payment_date`` may be a date or an ISO string; a time component
        ('2024-03-15T00:00:00Z') is dropped so the calendar day is kept.

        Raises:
            InstallmentNotFoundError: Unknown installment.
            AlreadyPaidError: The installment is already paid.
            ValidationError: ``payment_date`` is not a calendar date.
        """
        try:
            paid_on = parse_iso_date(payment_date)
        except ValueError as exc:
            raise ValidationError("payment_date", str(exc)) from exc

        installment = self.get(installment_id, for_update=True)
        if installment.is_paid:
            logger.warning(
                "installment_already_paid",
                extra={
                    "installment_id": str(installment_id),
                    "payment_date": installment.payment_date,
                },
            )
            raise AlreadyPaidError(
                str(installment_id),
                installment.payment_date.isoformat() if installment.payment_date else None,
            )

        receipt = receipt or ReceiptInput()
        installment.status = InstallmentStatus.PAID.value
        installment.payment_date = paid_on
        installment.updated_by_id = actor_id

        receipt_row = PaymentReceiptModel(
            installment_id=installment.id,
            receipt_type=receipt.receipt_type.value,
            url=receipt.url,
            data=receipt.data_as_json(),
            confirmed_by=actor_id,
            confirmation_date=self.clock.now(),
            notes=receipt.notes,
        )
        self.session.add(receipt_row)
        self.session.flush()

        logger.info(
            "installment_payment_confirmed",
            extra={
                "sale_id": str(installment.sale_id),
                "installment_id": str(installment.id),
                "installment_number": installment.installment_number,
                "payment_date": paid_on,
                "receipt_type": receipt_row.receipt_type,
            },
        )
        return installment, receipt_row

    def add_split_payments(
        self,
        installment_id: UUID,
        actor_id: UUID,
        splits: Sequence[SplitPaymentInput],
    ) -> list[PaymentReceiptModel]:
        """
        Attach one ``split_payment`` receipt per payment method to a paid
        installment.

        The installment itself is not changed.  Each receipt's ``data``
        carries the method id, its name and the amount as text.

        Raises:
            InstallmentNotFoundError: Unknown installment.
            InstallmentNotPaidError: The installment is not paid yet.
            ValidationError: No splits, an unknown payment method, or an
                amount that is not a positive Decimal.
        """
        if not splits:
            raise ValidationError("splits", "at least one split payment is required")

        installment = self.get(installment_id, for_update=True)
        if not installment.is_paid:
            raise InstallmentNotPaidError(
                str(installment.sale_id), str(installment_id), installment.status
            )

        confirmed_at = self.clock.now()
        rows = []
        for split in splits:
            amount = split.amount
            if isinstance(amount, bool) or not isinstance(amount, Decimal):
                raise ValidationError(
                    "amount", f"must be a Decimal, got {type(amount).__name__}"
                )
            if not amount.is_finite() or amount <= 0:
                raise ValidationError("amount", "must be a positive amount")
            method = self.session.get(PaymentMethodModel, split.payment_method_id)
            if method is None:
                raise ValidationError(
                    "payment_method_id", f"unknown payment method {split.payment_method_id}"
                )
            rows.append(
                PaymentReceiptModel(
                    installment_id=installment.id,
                    receipt_type=ReceiptType.SPLIT_PAYMENT.value,
                    data={
                        "payment_method_id": str(method.id),
                        "payment_method_name": method.name,
                        "amount": str(amount),
                        "is_partial": True,
                    },
                    confirmed_by=actor_id,
                    confirmation_date=confirmed_at,
                    notes=f"Split payment - {method.name}: {amount}",
                )
            )
        self.session.add_all(rows)
        self.session.flush()

        logger.info(
            "split_payments_added",
            extra={
                "sale_id": str(installment.sale_id),
                "installment_id": str(installment.id),
                "split_count": len(rows),
                "split_total": sum((s.amount for s in splits), Decimal("0")),
            },
        )
        return rows

    def installments(self, sale_id: UUID) -> list[InstallmentModel]:
        """A sale's installments ordered by number."""
        return list(
            self.session.execute(
                select(InstallmentModel)
                .where(InstallmentModel.sale_id == sale_id)
                .order_by(InstallmentModel.installment_number)
            ).scalars()
        )

    def receipts(self, installment_id: UUID) -> list[PaymentReceiptModel]:
        """Receipts of one installment, oldest first."""
        return list(
            self.session.execute(
                select(PaymentReceiptModel)
                .where(PaymentReceiptModel.installment_id == installment_id)
                .order_by(PaymentReceiptModel.confirmation_date)
            ).scalars()
        )

    def payment_counts(self, sale_id: UUID) -> tuple[int, int]:
        """(paid_count, installment_count) for a sale."""
        total, paid = self.session.execute(
            select(
                func.count(InstallmentModel.id),
                func.count(InstallmentModel.id).filter(
                    InstallmentModel.status == InstallmentStatus.PAID.value
                ),
            ).where(InstallmentModel.sale_id == sale_id)
        ).one()
        return int(paid or 0), int(total or 0)

    def all_paid(self, sale_id: UUID) -> bool:
        """True iff the sale has installments and every one is paid."""
        paid, total = self.payment_counts(sale_id)
        return total > 0 and paid == total

    def effective_status(self, installment: InstallmentModel, today: date | None = None) -> str:
        """Stored status, or 'overdue' for a pending installment past due."""
        return effective_installment_status(
            installment.status, installment.due_date, today or self.clock.today()
        ).value
