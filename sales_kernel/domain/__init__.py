"""
Pure domain layer.

This module contains value objects and domain logic with NO dependencies on:
- ORM (SQLAlchemy)
- Database sessions
- I/O

All domain objects are immutable and deterministic.  Time enters only
through an injected Clock.
"""

from sales_kernel.domain.amortization import (
    InstallmentPlanLine,
    add_months,
    generate_installments,
)
from sales_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from sales_kernel.domain.dtos import (
    FinancialSummary,
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
from sales_kernel.domain.notes import append_note
from sales_kernel.domain.statuses import (
    Actor,
    ChangeKind,
    FinancialStatus,
    InstallmentStatus,
    OperationalStatus,
    ReceiptType,
    Role,
    StatusTrack,
    effective_installment_status,
)
from sales_kernel.domain.workflow import (
    FINANCIAL_WORKFLOW,
    OPERATIONAL_WORKFLOW,
    Guard,
    Transition,
    Workflow,
    replay_status,
    resolve_transition,
)

__all__ = [
    "InstallmentPlanLine",
    "add_months",
    "generate_installments",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "FinancialSummary",
    "InstallmentView",
    "OperationalCostInput",
    "OperationalCostView",
    "OperationalExtra",
    "PaymentReceiptView",
    "ReceiptInput",
    "SalePayload",
    "SaleSnapshot",
    "SplitPaymentInput",
    "StatusHistoryEntry",
    "append_note",
    "Actor",
    "ChangeKind",
    "FinancialStatus",
    "InstallmentStatus",
    "OperationalStatus",
    "ReceiptType",
    "Role",
    "StatusTrack",
    "effective_installment_status",
    "FINANCIAL_WORKFLOW",
    "OPERATIONAL_WORKFLOW",
    "Guard",
    "Transition",
    "Workflow",
    "replay_status",
    "resolve_transition",
]
