"""
FinancialWorkflow -- applies financial status transitions to a sale.

Responsibility:
    Given a sale already loaded and locked by the orchestrator, resolves a
    requested financial status change against FINANCIAL_WORKFLOW, checks
    the completion gate and the settlement guard, and writes one status
    history entry.

Architecture position:
    Kernel > Services -- imperative shell, called by SaleOrchestrator.

Invariants enforced:
    - A canceled sale accepts no financial transition.
    - ``completed`` is reachable only when every installment is paid.  The
      check runs inside the caller's transaction after the sale row lock,
      so no payment can slip in between check and write.
    - ``paid`` requires the operational track to be completed.
    - Financial completion is never automatic; confirming the last payment
      leaves the status untouched.

Failure modes:
    - SaleCanceledError, IllegalTransitionError, PermissionDeniedError.
    - IncompletePaymentsError, OperationalIncompleteError.
"""

from sqlalchemy.orm import Session

from sales_kernel.domain.clock import Clock
from sales_kernel.domain.dtos import StatusHistoryEntry
from sales_kernel.domain.statuses import Actor, OperationalStatus, StatusTrack
from sales_kernel.domain.workflow import (
    ALL_INSTALLMENTS_PAID,
    FINANCIAL_WORKFLOW,
    OPERATIONALLY_COMPLETED,
    Guard,
    resolve_transition,
)
from sales_kernel.exceptions import (
    IncompletePaymentsError,
    OperationalIncompleteError,
    SaleCanceledError,
)
from sales_kernel.logging_config import get_logger
from sales_kernel.models.sale import SaleModel
from sales_kernel.services.audit_log import AuditLog
from sales_kernel.services.base import BaseService
from sales_kernel.services.installment_ledger import InstallmentLedger

logger = get_logger("services.financial_workflow")


class FinancialWorkflow(BaseService):
    """
    Service for the financial track of a sale.

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
    ):
        super().__init__(session, clock)
        self._audit = audit_log
        self._ledger = ledger

    def transition(
        self,
        sale: SaleModel,
        target_status: str,
        actor: Actor,
        note: str | None = None,
    ) -> StatusHistoryEntry:
        """
        Move ``sale`` to ``target_status`` on the financial track.

        Postconditions:
            - ``sale.financial_status == target_status`` and one financial
              history entry is flushed.
        """
        target = str(getattr(target_status, "value", target_status))
        from_status = sale.financial_status

        if sale.status == OperationalStatus.CANCELED.value:
            raise SaleCanceledError(str(sale.id), f"financial transition to {target!r}")

        transition = resolve_transition(
            FINANCIAL_WORKFLOW,
            sale_id=str(sale.id),
            from_state=from_status,
            to_state=target,
            role=actor.role,
            actor_id=str(actor.actor_id),
            is_owner=sale.seller_id == actor.actor_id,
        )

        for guard in transition.guards:
            self._check_guard(guard, sale)

        if transition.stamps_responsible:
            sale.responsible_financial_id = actor.actor_id
        sale.financial_status = target
        sale.updated_by_id = actor.actor_id
        self.session.flush()

        entry = self._audit.record(
            sale.id,
            from_status,
            target,
            actor.actor_id,
            note=note,
            track=StatusTrack.FINANCIAL,
        )

        logger.info(
            "financial_transition_applied",
            extra={
                "sale_id": str(sale.id),
                "action": transition.action,
                "from_status": from_status,
                "to_status": target,
                "role": actor.role.value,
            },
        )
        return entry

    def _check_guard(self, guard: Guard, sale: SaleModel) -> None:
        if guard is ALL_INSTALLMENTS_PAID:
            paid, total = self._ledger.payment_counts(sale.id)
            if total == 0 or paid != total:
                logger.warning(
                    "financial_completion_blocked",
                    extra={
                        "sale_id": str(sale.id),
                        "paid_count": paid,
                        "installment_count": total,
                    },
                )
                raise IncompletePaymentsError(str(sale.id), paid, total)

        elif guard is OPERATIONALLY_COMPLETED:
            if sale.status != OperationalStatus.COMPLETED.value:
                raise OperationalIncompleteError(str(sale.id), sale.status)

        else:
            raise ValueError(f"Unknown financial guard: {guard.name}")
