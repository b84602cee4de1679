"""
Sale change notification collaborators.

Responsibility:
    Defines the ``SaleNotifier`` protocol the orchestrator calls after a
    successful commit, plus two implementations: ``NullNotifier`` (does
    nothing) and ``LoggingNotifier`` (emits a structured log record).

Architecture position:
    Kernel > Services -- outbound port.  Realtime delivery to clients is
    the host application's concern; it plugs in its own notifier.

Failure modes:
    The orchestrator logs and discards notifier exceptions.  A notifier
    failure never affects the committed transaction.
"""

from typing import Protocol, runtime_checkable
from uuid import UUID

from sales_kernel.domain.statuses import ChangeKind
from sales_kernel.logging_config import get_logger

logger = get_logger("services.notification")


@runtime_checkable
class SaleNotifier(Protocol):
    """Receives one call per committed sale change."""

    def notify(self, sale_id: UUID, change_kind: ChangeKind) -> None:
        ...


class NullNotifier:
    """Notifier that discards every change."""

    def notify(self, sale_id: UUID, change_kind: ChangeKind) -> None:
        return None


class LoggingNotifier:
    """Notifier that records every change in the structured log."""

    def notify(self, sale_id: UUID, change_kind: ChangeKind) -> None:
        logger.info(
            "sale_change_published",
            extra={"sale_id": str(sale_id), "change_kind": ChangeKind(change_kind).value},
        )
