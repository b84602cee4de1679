"""
Status vocabularies and actor identity (``sales_kernel.domain.statuses``).

Pure value objects.  ZERO I/O.  Status values are the strings persisted in
the database and written to the status history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID


class OperationalStatus(str, Enum):
    """Execution lifecycle of a sale (``Sale.status``)."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RETURNED = "returned"
    CORRECTED = "corrected"
    COMPLETED = "completed"
    CANCELED = "canceled"


class FinancialStatus(str, Enum):
    """Collection/settlement lifecycle of a sale (``Sale.financial_status``)."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAID = "paid"


class InstallmentStatus(str, Enum):
    """Installment status.

    Only PENDING and PAID are ever stored.  OVERDUE is derived at read time
    for pending installments whose due date has passed.
    """

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class ReceiptType(str, Enum):
    """Kind of evidence attached to a payment confirmation."""

    MANUAL = "manual"
    LINK = "link"
    SPLIT_PAYMENT = "split_payment"


class StatusTrack(str, Enum):
    """Which sale field a status history row documents."""

    OPERATIONAL = "operational"
    FINANCIAL = "financial"
    INSTALLMENTS = "installments"


class Role(str, Enum):
    """Roles supplied by the identity collaborator."""

    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    OPERACIONAL = "operacional"
    FINANCEIRO = "financeiro"
    VENDEDOR = "vendedor"


class ChangeKind(str, Enum):
    """Change categories reported to the notification collaborator."""

    SALE_CREATED = "sale_created"
    OPERATIONAL_STATUS_CHANGED = "operational_status_changed"
    FINANCIAL_STATUS_CHANGED = "financial_status_changed"
    INSTALLMENT_PAID = "installment_paid"
    SPLIT_PAYMENTS_ADDED = "split_payments_added"
    INSTALLMENTS_REPLACED = "installments_replaced"
    OPERATIONAL_COST_RECORDED = "operational_cost_recorded"
    SALE_PURGED = "sale_purged"


@dataclass(frozen=True)
class Actor:
    """Identity of the caller, trusted as supplied."""

    actor_id: UUID
    role: Role

    def __post_init__(self):
        # Accept plain strings from the transport layer.
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))


def effective_installment_status(
    stored_status: str, due_date: date, today: date
) -> InstallmentStatus:
    """Derive the displayed status of an installment.

    A pending installment whose due date is before ``today`` is overdue.
    Overdue is never persisted.
    """
    status = InstallmentStatus(stored_status)
    if status is InstallmentStatus.PENDING and due_date < today:
        return InstallmentStatus.OVERDUE
    return status
