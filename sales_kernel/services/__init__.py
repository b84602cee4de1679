"""Services layer: track services, ledger, audit log and the orchestrator."""

from sales_kernel.services.audit_log import AuditLog
from sales_kernel.services.financial_workflow import FinancialWorkflow
from sales_kernel.services.installment_ledger import InstallmentLedger
from sales_kernel.services.notification import (
    LoggingNotifier,
    NullNotifier,
    SaleNotifier,
)
from sales_kernel.services.operational_workflow import OperationalWorkflow
from sales_kernel.services.sale_orchestrator import SaleOrchestrator
from sales_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditLog",
    "FinancialWorkflow",
    "InstallmentLedger",
    "LoggingNotifier",
    "NullNotifier",
    "SaleNotifier",
    "OperationalWorkflow",
    "SaleOrchestrator",
    "SequenceService",
]
