"""ORM models for the sales kernel."""

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
from sales_kernel.models.sequence import SequenceCounter
from sales_kernel.models.status_history import StatusHistoryModel

__all__ = [
    "CostTypeModel",
    "CustomerModel",
    "PaymentMethodModel",
    "ServiceProviderModel",
    "ServiceTypeModel",
    "InstallmentModel",
    "PaymentReceiptModel",
    "OperationalCostModel",
    "SaleModel",
    "SaleServiceProviderModel",
    "SequenceCounter",
    "StatusHistoryModel",
]
