"""
SaleOrchestrator -- the single entry point for every sale mutation.

Responsibility:
    Receives a request (actor, action, sale id, payload), loads the sale
    under a row lock, delegates to the operational or financial track
    service or the installment ledger, commits, and notifies the
    notification collaborator after the commit.

Architecture position:
    Kernel > Services -- owns the transaction boundary.  Track services
    and the ledger only flush; this class commits on success and rolls
    back on failure.

Invariants enforced:
    - Each public operation is one atomic transaction: the sale mutation,
      ledger changes and status history entry commit together or not at
      all.
    - The sale row is read with ``SELECT ... FOR UPDATE`` and every
      mutating operation bumps the sale's version, so concurrent
      operations on one sale serialize.  A stale write raises
      OptimisticLockError instead of overwriting.
    - A canceled sale accepts no mutation of any kind.
    - The notifier runs strictly after commit.  Its failure is logged and
      never undoes the commit.

Failure modes:
    - ValidationError, IllegalTransitionError, PermissionDeniedError,
      PreconditionFailedError, AlreadyPaidError, NotFoundError subclasses,
      OptimisticLockError.  The transaction is rolled back before any of
      them reaches the caller.  Nothing is retried automatically.

Audit relevance:
    Every accepted status change and every re-amortization appends to the
    sale's status history.  Payments are evidenced by receipts.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Iterator, Mapping
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from sales_kernel.config import SalesKernelConfig
from sales_kernel.db.types import parse_iso_date
from sales_kernel.domain.amortization import generate_installments
from sales_kernel.domain.clock import Clock, SystemClock
from sales_kernel.domain.dtos import (
    InstallmentView,
    OperationalCostInput,
    OperationalCostView,
    OperationalExtra,
    PaymentReceiptView,
    ReceiptInput,
    SalePayload,
    SaleSnapshot,
    SplitPaymentInput,
    StatusHistoryEntry,
)
from sales_kernel.domain.statuses import (
    Actor,
    ChangeKind,
    FinancialStatus,
    OperationalStatus,
    Role,
    StatusTrack,
)
from sales_kernel.exceptions import (
    OptimisticLockError,
    PaidInstallmentsExistError,
    PermissionDeniedError,
    SaleCanceledError,
    SaleNotFoundError,
    ValidationError,
)
from sales_kernel.logging_config import LogContext, get_logger
from sales_kernel.models.catalog import (
    CostTypeModel,
    CustomerModel,
    PaymentMethodModel,
    ServiceProviderModel,
    ServiceTypeModel,
)
from sales_kernel.models.installment import InstallmentModel, PaymentReceiptModel
from sales_kernel.models.operational_cost import OperationalCostModel
from sales_kernel.models.sale import SaleModel, SaleServiceProviderModel
from sales_kernel.models.status_history import StatusHistoryModel
from sales_kernel.services.audit_log import AuditLog
from sales_kernel.services.financial_workflow import FinancialWorkflow
from sales_kernel.services.installment_ledger import InstallmentLedger
from sales_kernel.services.notification import NullNotifier, SaleNotifier
from sales_kernel.services.operational_workflow import OperationalWorkflow

logger = get_logger("services.sale_orchestrator")

_CREATE_ROLES = frozenset({Role.VENDEDOR, Role.SUPERVISOR, Role.ADMIN})
_PAYMENT_ROLES = frozenset({Role.FINANCEIRO, Role.ADMIN})
_COST_ROLES = frozenset(
    {Role.OPERACIONAL, Role.FINANCEIRO, Role.SUPERVISOR, Role.ADMIN}
)
_ADMIN_ROLES = frozenset({Role.ADMIN})


class SaleOrchestrator:
    """
    Coordinates the operational track, financial track and installment
    ledger of a sale.

    Transaction boundary: this service commits on success, rolls back on
    failure.  Construct one per session.

    Usage:
        orchestrator = SaleOrchestrator(session, clock=SystemClock())
        sale = orchestrator.create_sale(payload, actor)
        orchestrator.request_operational_transition(sale.id, "in_progress", actor)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: SaleNotifier | None = None,
        config: SalesKernelConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._notifier = notifier or NullNotifier()
        self._config = config or SalesKernelConfig()

        self._audit = AuditLog(session, self._clock)
        self._ledger = InstallmentLedger(session, self._clock)
        self._operational = OperationalWorkflow(
            session, self._audit, self._ledger, self._clock, self._config
        )
        self._financial = FinancialWorkflow(
            session, self._audit, self._ledger, self._clock
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_sale(self, payload: SalePayload, actor: Actor) -> SaleSnapshot:
        """
        Register a new sale with its installment plan.

        Postconditions:
            - Sale persisted with status pending / financial_status pending.
            - ``installments_count`` installments summing to the total.
            - One operational history entry '' -> pending.

        Raises:
            PermissionDeniedError: The role may not sell.
            ValidationError: Unknown references, duplicate order number or
                malformed amounts and dates.  No partial sale is left.
        """
        self._require_role(actor, _CREATE_ROLES, "create a sale")

        with self._unit_of_work("create_sale", actor):
            self._validate_payload(payload)
            seller_id = payload.seller_id
            if seller_id is None:
                if actor.role is not Role.VENDEDOR:
                    raise ValidationError("seller_id", "required when the actor is not the seller")
                seller_id = actor.actor_id

            plan = generate_installments(
                payload.total_amount,
                payload.installments_count,
                parse_iso_date(payload.first_due_date),
                decimal_places=self._config.installment_decimal_places,
            )

            sale = SaleModel(
                order_number=payload.order_number.strip(),
                sale_date=parse_iso_date(payload.sale_date),
                customer_id=payload.customer_id,
                seller_id=seller_id,
                payment_method_id=payload.payment_method_id,
                service_type_id=payload.service_type_id,
                service_provider_id=payload.service_provider_id,
                total_amount=payload.total_amount,
                installments_count=payload.installments_count,
                notes=payload.notes,
                status=OperationalStatus.PENDING.value,
                financial_status=FinancialStatus.PENDING.value,
                created_by_id=actor.actor_id,
            )
            self._session.add(sale)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise ValidationError(
                    "order_number", f"{payload.order_number!r} could not be stored: {exc.orig}"
                ) from exc

            self._ledger.replace_all(sale.id, plan, actor.actor_id)
            self._audit.record(
                sale.id,
                "",
                OperationalStatus.PENDING.value,
                actor.actor_id,
                note=None,
                track=StatusTrack.OPERATIONAL,
            )
            snapshot = self._snapshot(sale)

        logger.info(
            "sale_created",
            extra={
                "sale_id": str(snapshot.id),
                "order_number": snapshot.order_number,
                "total_amount": snapshot.total_amount,
                "installments_count": snapshot.installments_count,
            },
        )
        self._notify(snapshot.id, ChangeKind.SALE_CREATED)
        return snapshot

    def request_operational_transition(
        self,
        sale_id: UUID,
        target_status: str | OperationalStatus,
        actor: Actor,
        extra: OperationalExtra | Mapping[str, Any] | None = None,
    ) -> SaleSnapshot:
        """
        Move a sale along the operational track.

        Raises:
            SaleNotFoundError, SaleCanceledError, IllegalTransitionError,
            PermissionDeniedError, PreconditionFailedError, ValidationError.
        """
        if not isinstance(extra, OperationalExtra):
            extra = OperationalExtra.from_mapping(extra)

        with self._unit_of_work("operational_transition", actor, sale_id):
            sale = self._lock_sale(sale_id)
            self._operational.transition(sale, target_status, actor, extra)
            snapshot = self._snapshot(sale)

        self._notify(sale_id, ChangeKind.OPERATIONAL_STATUS_CHANGED)
        return snapshot

    def request_financial_transition(
        self,
        sale_id: UUID,
        target_status: str | FinancialStatus,
        actor: Actor,
        note: str | None = None,
    ) -> SaleSnapshot:
        """
        Move a sale along the financial track.

        Raises:
            SaleNotFoundError, SaleCanceledError, IllegalTransitionError,
            PermissionDeniedError, IncompletePaymentsError,
            OperationalIncompleteError.
        """
        with self._unit_of_work("financial_transition", actor, sale_id):
            sale = self._lock_sale(sale_id)
            self._financial.transition(sale, target_status, actor, note)
            snapshot = self._snapshot(sale)

        self._notify(sale_id, ChangeKind.FINANCIAL_STATUS_CHANGED)
        return snapshot

    def confirm_installment_payment(
        self,
        installment_id: UUID,
        actor: Actor,
        payment_date: date | str,
        receipt: ReceiptInput | None = None,
    ) -> InstallmentView:
        """
        Confirm one installment as paid.

        Never changes the sale's financial status.

        Raises:
            PermissionDeniedError, InstallmentNotFoundError,
            SaleCanceledError, AlreadyPaidError, ValidationError.
        """
        self._require_role(actor, _PAYMENT_ROLES, "confirm installment payments")

        with self._unit_of_work("confirm_installment_payment", actor):
            sale_id = self._ledger.get(installment_id).sale_id
            sale = self._lock_sale(sale_id)
            if sale.status == OperationalStatus.CANCELED.value:
                raise SaleCanceledError(str(sale_id), "payment confirmation")

            installment, _ = self._ledger.confirm_payment(
                installment_id, actor.actor_id, payment_date, receipt
            )
            self._touch(sale, actor)
            view = installment.to_dto(self._clock.today())

        self._notify(sale_id, ChangeKind.INSTALLMENT_PAID)
        return view

    def add_split_payments(
        self,
        installment_id: UUID,
        actor: Actor,
        splits: list[SplitPaymentInput | Mapping[str, Any]],
    ) -> tuple[PaymentReceiptView, ...]:
        """
        Record how a paid installment was split across payment methods.

        Adds one receipt per split; payment status and dates are untouched.

        Raises:
            PermissionDeniedError, InstallmentNotFoundError,
            SaleCanceledError, InstallmentNotPaidError, ValidationError.
        """
        self._require_role(actor, _PAYMENT_ROLES, "add split payments")
        parsed = [
            s if isinstance(s, SplitPaymentInput) else SplitPaymentInput.from_mapping(s)
            for s in splits
        ]

        with self._unit_of_work("add_split_payments", actor):
            sale_id = self._ledger.get(installment_id).sale_id
            sale = self._lock_sale(sale_id)
            if sale.status == OperationalStatus.CANCELED.value:
                raise SaleCanceledError(str(sale_id), "split payments")

            rows = self._ledger.add_split_payments(installment_id, actor.actor_id, parsed)
            self._touch(sale, actor)
            views = tuple(row.to_dto() for row in rows)

        self._notify(sale_id, ChangeKind.SPLIT_PAYMENTS_ADDED)
        return views

    def record_operational_cost(
        self,
        sale_id: UUID,
        actor: Actor,
        cost: OperationalCostInput,
    ) -> OperationalCostView:
        """
        Attach an operational cost to a sale.

        Raises:
            PermissionDeniedError, SaleNotFoundError, SaleCanceledError,
            ValidationError.
        """
        self._require_role(actor, _COST_ROLES, "record operational costs")

        with self._unit_of_work("record_operational_cost", actor, sale_id):
            self._validate_cost(cost)
            sale = self._lock_sale(sale_id)
            if sale.status == OperationalStatus.CANCELED.value:
                raise SaleCanceledError(str(sale_id), "operational cost")

            row = OperationalCostModel(
                sale_id=sale.id,
                description=cost.description.strip(),
                cost_type_id=cost.cost_type_id,
                amount=cost.amount,
                cost_date=parse_iso_date(cost.cost_date),
                payment_date=(
                    parse_iso_date(cost.payment_date) if cost.payment_date else None
                ),
                responsible_id=actor.actor_id,
                service_provider_id=cost.service_provider_id,
                notes=cost.notes,
                created_by_id=actor.actor_id,
            )
            self._session.add(row)
            self._touch(sale, actor)
            view = row.to_dto()

        logger.info(
            "operational_cost_recorded",
            extra={"sale_id": str(sale_id), "amount": view.amount},
        )
        self._notify(sale_id, ChangeKind.OPERATIONAL_COST_RECORDED)
        return view

    def reamortize_installments(
        self,
        sale_id: UUID,
        actor: Actor,
        installments_count: int | None = None,
        first_due_date: date | str | None = None,
        note: str | None = None,
    ) -> tuple[InstallmentView, ...]:
        """
        Rebuild a sale's installment plan (administrative).

        Refused while any installment is paid, so recorded payments are
        never discarded.  Written to the history on the installments track
        with the old and new installment counts.

        Raises:
            PermissionDeniedError, SaleNotFoundError, SaleCanceledError,
            PaidInstallmentsExistError, ValidationError.
        """
        self._require_role(actor, _ADMIN_ROLES, "re-amortize installments")

        with self._unit_of_work("reamortize_installments", actor, sale_id):
            sale = self._lock_sale(sale_id)
            if sale.status == OperationalStatus.CANCELED.value:
                raise SaleCanceledError(str(sale_id), "re-amortization")

            paid, old_count = self._ledger.payment_counts(sale.id)
            if paid:
                raise PaidInstallmentsExistError(str(sale_id), paid)

            current = self._ledger.installments(sale.id)
            if first_due_date is not None:
                start = parse_iso_date(first_due_date)
            elif current:
                start = current[0].due_date
            else:
                start = sale.sale_date
            count = sale.installments_count if installments_count is None else installments_count

            plan = generate_installments(
                sale.total_amount,
                count,
                start,
                decimal_places=self._config.installment_decimal_places,
            )
            rows = self._ledger.replace_all(sale.id, plan, actor.actor_id)
            sale.installments_count = count
            self._touch(sale, actor)
            self._audit.record(
                sale.id,
                str(old_count),
                str(count),
                actor.actor_id,
                note=note,
                track=StatusTrack.INSTALLMENTS,
            )
            today = self._clock.today()
            views = tuple(row.to_dto(today) for row in rows)

        self._notify(sale_id, ChangeKind.INSTALLMENTS_REPLACED)
        return views

    def purge_sale(self, sale_id: UUID, actor: Actor) -> None:
        """
        Physically delete a sale and everything that hangs off it
        (administrative).

        Bulk statements remove history rows without going through the
        ORM's append-only listeners.
        """
        self._require_role(actor, _ADMIN_ROLES, "purge sales")

        with self._unit_of_work("purge_sale", actor, sale_id):
            sale = self._lock_sale(sale_id)
            installment_ids = select(InstallmentModel.id).where(
                InstallmentModel.sale_id == sale.id
            )
            counts = {}
            for label, stmt in (
                (
                    "receipts",
                    delete(PaymentReceiptModel).where(
                        PaymentReceiptModel.installment_id.in_(installment_ids)
                    ),
                ),
                ("installments", delete(InstallmentModel).where(InstallmentModel.sale_id == sale.id)),
                ("costs", delete(OperationalCostModel).where(OperationalCostModel.sale_id == sale.id)),
                (
                    "providers",
                    delete(SaleServiceProviderModel).where(
                        SaleServiceProviderModel.sale_id == sale.id
                    ),
                ),
                ("history", delete(StatusHistoryModel).where(StatusHistoryModel.sale_id == sale.id)),
            ):
                counts[label] = self._session.execute(
                    stmt.execution_options(synchronize_session=False)
                ).rowcount
            self._session.execute(
                delete(SaleModel)
                .where(SaleModel.id == sale.id)
                .execution_options(synchronize_session=False)
            )
            self._session.expunge_all()

        logger.warning(
            "sale_purged",
            extra={"sale_id": str(sale_id), **{f"removed_{k}": v for k, v in counts.items()}},
        )
        self._notify(sale_id, ChangeKind.SALE_PURGED)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_sale(self, sale_id: UUID) -> SaleSnapshot:
        """
        Current state of a sale.

        Raises:
            SaleNotFoundError: Unknown sale id.
        """
        sale = self._session.get(SaleModel, sale_id)
        if sale is None:
            raise SaleNotFoundError(str(sale_id))
        return self._snapshot(sale)

    def history(self, sale_id: UUID) -> tuple[StatusHistoryEntry, ...]:
        """Status history of a sale, oldest first."""
        return self._audit.history(sale_id)

    def verify_history(self, sale_id: UUID) -> bool:
        """Validate the sale's history hash chain."""
        return self._audit.verify_chain(sale_id)

    # =========================================================================
    # Internals
    # =========================================================================

    @contextmanager
    def _unit_of_work(
        self, operation: str, actor: Actor, sale_id: UUID | None = None
    ) -> Iterator[None]:
        with LogContext.bind(
            actor_id=str(actor.actor_id),
            role=actor.role.value,
            sale_id=str(sale_id) if sale_id is not None else None,
        ):
            logger.info(f"{operation}_started")
            try:
                yield
                self._session.commit()
            except StaleDataError as exc:
                self._session.rollback()
                logger.warning(
                    "optimistic_lock_conflict",
                    extra={"operation": operation},
                )
                raise OptimisticLockError("Sale", str(sale_id)) from exc
            except Exception:
                self._session.rollback()
                logger.warning(f"{operation}_rolled_back", exc_info=True)
                raise
            logger.info(f"{operation}_committed")

    def _lock_sale(self, sale_id: UUID) -> SaleModel:
        # No populate_existing: an already-loaded sale keeps its version so
        # a concurrent commit surfaces as a stale write.
        sale = self._session.execute(
            select(SaleModel).where(SaleModel.id == sale_id).with_for_update()
        ).scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(str(sale_id))
        return sale

    def _touch(self, sale: SaleModel, actor: Actor) -> None:
        # Forces an UPDATE so the version column advances even when no
        # sale field changed.
        sale.updated_by_id = actor.actor_id
        flag_modified(sale, "updated_by_id")
        self._session.flush()

    def _snapshot(self, sale: SaleModel) -> SaleSnapshot:
        return sale.to_dto(self._operational.provider_ids(sale.id))

    def _notify(self, sale_id: UUID, change_kind: ChangeKind) -> None:
        try:
            self._notifier.notify(sale_id, change_kind)
        except Exception:
            logger.error(
                "sale_notification_failed",
                extra={"sale_id": str(sale_id), "change_kind": change_kind.value},
                exc_info=True,
            )

    @staticmethod
    def _require_role(actor: Actor, roles: frozenset[Role], operation: str) -> None:
        if actor.role not in roles:
            raise PermissionDeniedError(str(actor.actor_id), actor.role.value, operation)

    def _validate_payload(self, payload: SalePayload) -> None:
        if not payload.order_number or not payload.order_number.strip():
            raise ValidationError("order_number", "required")
        for field_name, value in (
            ("sale_date", payload.sale_date),
            ("first_due_date", payload.first_due_date),
        ):
            try:
                parse_iso_date(value)
            except ValueError as exc:
                raise ValidationError(field_name, str(exc)) from exc

        self._require_exists(CustomerModel, payload.customer_id, "customer_id")
        self._require_exists(PaymentMethodModel, payload.payment_method_id, "payment_method_id")
        self._require_exists(ServiceTypeModel, payload.service_type_id, "service_type_id")
        if payload.service_provider_id is not None:
            self._require_exists(
                ServiceProviderModel, payload.service_provider_id, "service_provider_id"
            )

        duplicate = self._session.execute(
            select(SaleModel.id).where(
                SaleModel.order_number == payload.order_number.strip()
            )
        ).first()
        if duplicate is not None:
            raise ValidationError(
                "order_number", f"{payload.order_number!r} is already in use"
            )

    def _validate_cost(self, cost: OperationalCostInput) -> None:
        if not cost.description or not cost.description.strip():
            raise ValidationError("description", "required")
        if isinstance(cost.amount, float) or not isinstance(cost.amount, Decimal):
            raise ValidationError("amount", "must be a Decimal")
        if not cost.amount.is_finite() or cost.amount <= 0:
            raise ValidationError("amount", "must be greater than zero")
        try:
            parse_iso_date(cost.cost_date)
            if cost.payment_date:
                parse_iso_date(cost.payment_date)
        except ValueError as exc:
            raise ValidationError("cost_date", str(exc)) from exc
        if cost.cost_type_id is not None:
            self._require_exists(CostTypeModel, cost.cost_type_id, "cost_type_id")
        if cost.service_provider_id is not None:
            self._require_exists(
                ServiceProviderModel, cost.service_provider_id, "service_provider_id"
            )

    def _require_exists(self, model, key: UUID | None, field_name: str) -> None:
        if key is None:
            raise ValidationError(field_name, "required")
        if self._session.get(model, key) is None:
            raise ValidationError(field_name, f"unknown id {key}")
