"""
OperationalWorkflow -- applies operational status transitions to a sale.

Responsibility:
    Given a sale already loaded and locked by the orchestrator, resolves a
    requested operational status change against OPERATIONAL_WORKFLOW,
    evaluates its guards, applies its side effects and writes one status
    history entry.

Architecture position:
    Kernel > Services -- imperative shell, called by SaleOrchestrator.
    Transition legality lives in domain.workflow; this service evaluates
    guards, which need the database (service types, providers, ledger).

Invariants enforced:
    - A canceled sale accepts nothing (SaleCanceledError).
    - ``in_progress`` and ``completed`` stamp ``responsible_operational_id``.
    - ``returned`` stores the return reason; ``corrected`` clears it.
    - A seller correction appends its note to ``Sale.notes`` and never
      rewrites earlier text.
    - Financial fields change only during a correction, only while the
      financial status is still pending and only with no paid installment;
      the new installment set is written in the same transaction and
      audited on the installments track.

Failure modes:
    - IllegalTransitionError, PermissionDeniedError from resolution.
    - PreconditionFailedError (and FinancialDataLockedError,
      PaidInstallmentsExistError) from guards.
    - ValidationError for unknown service types or providers.
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from sales_kernel.config import SalesKernelConfig
from sales_kernel.domain.amortization import generate_installments
from sales_kernel.domain.clock import Clock
from sales_kernel.domain.dtos import OperationalExtra, StatusHistoryEntry
from sales_kernel.domain.notes import append_note
from sales_kernel.domain.statuses import (
    Actor,
    FinancialStatus,
    OperationalStatus,
    StatusTrack,
)
from sales_kernel.domain.workflow import (
    CORRECTION_NOTE_GIVEN,
    OPERATIONAL_WORKFLOW,
    PROVIDER_WHEN_REQUIRED,
    RETURN_REASON_GIVEN,
    SERVICE_TYPE_SELECTED,
    Guard,
    Transition,
    resolve_transition,
)
from sales_kernel.exceptions import (
    FinancialDataLockedError,
    PaidInstallmentsExistError,
    PreconditionFailedError,
    SaleCanceledError,
    ValidationError,
)
from sales_kernel.logging_config import get_logger
from sales_kernel.models.catalog import ServiceProviderModel, ServiceTypeModel
from sales_kernel.models.sale import SaleModel, SaleServiceProviderModel
from sales_kernel.services.audit_log import AuditLog
from sales_kernel.services.base import BaseService
from sales_kernel.services.installment_ledger import InstallmentLedger

logger = get_logger("services.operational_workflow")

_O = OperationalStatus


def _blank(text: str | None) -> bool:
    return text is None or not text.strip()


class OperationalWorkflow(BaseService):
    """
    Service for the operational track of a sale.

    Non-goals:
        - Does NOT lock or load the sale -- the orchestrator does.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        audit_log: AuditLog,
        ledger: InstallmentLedger,
        clock: Clock | None = None,
        config: SalesKernelConfig | None = None,
    ):
        super().__init__(session, clock)
        self._audit = audit_log
        self._ledger = ledger
        self._config = config or SalesKernelConfig()

    def transition(
        self,
        sale: SaleModel,
        target_status: str,
        actor: Actor,
        extra: OperationalExtra | None = None,
    ) -> StatusHistoryEntry:
        """
        Move ``sale`` to ``target_status`` on the operational track.

        Postconditions:
            - ``sale.status == target_status`` and one operational history
              entry is flushed.
        """
        extra = extra or OperationalExtra()
        target = str(getattr(target_status, "value", target_status))
        from_status = sale.status

        if from_status == _O.CANCELED.value:
            raise SaleCanceledError(str(sale.id), f"operational transition to {target!r}")

        transition = resolve_transition(
            OPERATIONAL_WORKFLOW,
            sale_id=str(sale.id),
            from_state=from_status,
            to_state=target,
            role=actor.role,
            actor_id=str(actor.actor_id),
            is_owner=sale.seller_id == actor.actor_id,
        )

        if extra.changes_financial_data and target != _O.CORRECTED.value:
            raise ValidationError(
                "extra", "total, installment count and due date change only with a correction"
            )

        for guard in transition.guards:
            self._check_guard(guard, sale, extra)

        self._apply_side_effects(transition, sale, actor, extra)

        sale.status = target
        sale.updated_by_id = actor.actor_id
        self.session.flush()

        entry = self._audit.record(
            sale.id,
            from_status,
            target,
            actor.actor_id,
            note=self._history_note(target, extra),
            track=StatusTrack.OPERATIONAL,
        )

        logger.info(
            "operational_transition_applied",
            extra={
                "sale_id": str(sale.id),
                "action": transition.action,
                "from_status": from_status,
                "to_status": target,
                "role": actor.role.value,
            },
        )
        return entry

    # =========================================================================
    # Guards
    # =========================================================================

    def _check_guard(self, guard: Guard, sale: SaleModel, extra: OperationalExtra) -> None:
        sale_id = str(sale.id)

        if guard is SERVICE_TYPE_SELECTED:
            if (extra.service_type_id or sale.service_type_id) is None:
                raise PreconditionFailedError(
                    sale_id, guard.name, "select a service type before starting execution"
                )

        elif guard is PROVIDER_WHEN_REQUIRED:
            service_type = self._service_type(extra.service_type_id or sale.service_type_id)
            if extra.service_provider_ids is not None:
                self._require_providers(extra.service_provider_ids)
            if service_type.requires_service_provider and not self._has_provider(sale, extra):
                raise PreconditionFailedError(
                    sale_id,
                    guard.name,
                    f"service type {service_type.name!r} requires a service provider",
                )

        elif guard is RETURN_REASON_GIVEN:
            if _blank(extra.return_reason):
                raise PreconditionFailedError(sale_id, guard.name, "return reason is empty")

        elif guard is CORRECTION_NOTE_GIVEN:
            if _blank(extra.correction_note):
                raise PreconditionFailedError(
                    sale_id, guard.name, "describe the correction that was made"
                )

        else:
            raise ValueError(f"Unknown operational guard: {guard.name}")

    def _service_type(self, service_type_id: UUID) -> ServiceTypeModel:
        service_type = self.session.get(ServiceTypeModel, service_type_id)
        if service_type is None:
            raise ValidationError("service_type_id", f"unknown service type {service_type_id}")
        return service_type

    def _require_providers(self, provider_ids) -> None:
        if not provider_ids:
            return
        found = set(
            self.session.execute(
                select(ServiceProviderModel.id).where(
                    ServiceProviderModel.id.in_(list(provider_ids))
                )
            ).scalars()
        )
        missing = [str(p) for p in provider_ids if p not in found]
        if missing:
            raise ValidationError(
                "service_provider_ids", f"unknown service providers: {', '.join(missing)}"
            )

    def _has_provider(self, sale: SaleModel, extra: OperationalExtra) -> bool:
        if extra.service_provider_ids is not None:
            return len(extra.service_provider_ids) > 0
        if sale.service_provider_id is not None:
            return True
        return bool(self.provider_ids(sale.id))

    def provider_ids(self, sale_id: UUID) -> tuple[UUID, ...]:
        """Partner providers linked to a sale."""
        return tuple(
            self.session.execute(
                select(SaleServiceProviderModel.service_provider_id)
                .where(SaleServiceProviderModel.sale_id == sale_id)
                .order_by(SaleServiceProviderModel.service_provider_id)
            ).scalars()
        )

    # =========================================================================
    # Side effects
    # =========================================================================

    def _apply_side_effects(
        self,
        transition: Transition,
        sale: SaleModel,
        actor: Actor,
        extra: OperationalExtra,
    ) -> None:
        if transition.stamps_responsible:
            sale.responsible_operational_id = actor.actor_id

        target = transition.to_state
        if target == _O.IN_PROGRESS.value:
            if extra.service_type_id is not None:
                sale.service_type_id = extra.service_type_id
            if extra.service_provider_ids is not None:
                self._replace_providers(sale.id, extra.service_provider_ids)

        elif target == _O.RETURNED.value:
            sale.return_reason = extra.return_reason.strip()

        elif target == _O.CORRECTED.value:
            sale.return_reason = None
            if not _blank(extra.correction_note):
                sale.notes = append_note(
                    sale.notes,
                    extra.correction_note,
                    label=self._config.correction_note_label,
                    at=self.clock.now(),
                )
            if extra.changes_financial_data:
                self._apply_financial_correction(sale, actor, extra)

    def _replace_providers(self, sale_id: UUID, provider_ids) -> None:
        self.session.execute(
            delete(SaleServiceProviderModel).where(
                SaleServiceProviderModel.sale_id == sale_id
            )
        )
        for provider_id in dict.fromkeys(provider_ids):
            self.session.add(
                SaleServiceProviderModel(sale_id=sale_id, service_provider_id=provider_id)
            )
        self.session.flush()

    def _apply_financial_correction(
        self, sale: SaleModel, actor: Actor, extra: OperationalExtra
    ) -> None:
        if sale.financial_status != FinancialStatus.PENDING.value:
            raise FinancialDataLockedError(str(sale.id), sale.financial_status)

        paid, _ = self._ledger.payment_counts(sale.id)
        if paid:
            raise PaidInstallmentsExistError(str(sale.id), paid)

        current = self._ledger.installments(sale.id)
        old_count = len(current)
        first_due_date = extra.first_due_date or (
            current[0].due_date if current else sale.sale_date
        )
        total = sale.total_amount if extra.total_amount is None else extra.total_amount
        count = (
            sale.installments_count
            if extra.installments_count is None
            else extra.installments_count
        )

        plan = generate_installments(
            total,
            count,
            first_due_date,
            decimal_places=self._config.installment_decimal_places,
        )
        self._ledger.replace_all(sale.id, plan, actor.actor_id)
        sale.total_amount = total
        sale.installments_count = count

        self._audit.record(
            sale.id,
            str(old_count),
            str(count),
            actor.actor_id,
            note=f"re-amortized {total} over {count} installment(s) from {first_due_date}",
            track=StatusTrack.INSTALLMENTS,
        )

    @staticmethod
    def _history_note(target: str, extra: OperationalExtra) -> str | None:
        if target == _O.RETURNED.value and not _blank(extra.return_reason):
            return extra.return_reason.strip()
        if target == _O.CORRECTED.value and not _blank(extra.correction_note):
            return extra.correction_note.strip()
        return extra.note
