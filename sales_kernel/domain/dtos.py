"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the orchestrator
    boundary: request payloads (SalePayload, OperationalExtra, ReceiptInput,
    OperationalCostInput) and read views (SaleSnapshot, InstallmentView,
    PaymentReceiptView, OperationalCostView, StatusHistoryEntry,
    FinancialSummary).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ORM models convert themselves with ``to_dto()``; nothing here imports
    the database layer.

Invariants enforced:
    - Request payloads never carry floats for amounts.
    - Receipt ``data`` is deep-frozen so a view cannot be mutated after
      it leaves the transaction.

Failure modes:
    - ValidationError from ``OperationalExtra.from_mapping`` on unknown keys
      or malformed values.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from sales_kernel.db.types import money_from_str, parse_iso_date
from sales_kernel.domain.statuses import ReceiptType, StatusTrack
from sales_kernel.exceptions import ValidationError


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


# =============================================================================
# Request payloads
# =============================================================================


@dataclass(frozen=True)
class SalePayload:
    """Input for ``create_sale``.

    ``seller_id`` defaults to the acting seller when omitted.
    """

    order_number: str
    sale_date: date
    customer_id: UUID
    payment_method_id: UUID
    service_type_id: UUID
    total_amount: Decimal
    installments_count: int
    first_due_date: date
    seller_id: UUID | None = None
    service_provider_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class OperationalExtra:
    """Optional data accompanying an operational transition.

    Which fields matter depends on the target status:
        in_progress -> service_type_id, service_provider_ids
        returned    -> return_reason
        corrected   -> correction_note and, for a seller, optional new
                       total_amount / installments_count / first_due_date
    ``note`` is copied into the status history entry.
    """

    return_reason: str | None = None
    correction_note: str | None = None
    service_type_id: UUID | None = None
    service_provider_ids: tuple[UUID, ...] | None = None
    total_amount: Decimal | None = None
    installments_count: int | None = None
    first_due_date: date | None = None
    note: str | None = None

    @property
    def changes_financial_data(self) -> bool:
        return (
            self.total_amount is not None
            or self.installments_count is not None
            or self.first_due_date is not None
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> OperationalExtra:
        """Build from a loosely-typed mapping such as a decoded request body."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError("extra", f"unknown keys: {', '.join(unknown)}")

        values = dict(data)
        try:
            if values.get("service_type_id") is not None:
                values["service_type_id"] = _as_uuid(values["service_type_id"])
            if values.get("service_provider_ids") is not None:
                values["service_provider_ids"] = tuple(
                    _as_uuid(v) for v in values["service_provider_ids"]
                )
            if values.get("first_due_date") is not None:
                values["first_due_date"] = parse_iso_date(values["first_due_date"])
        except ValueError as exc:
            raise ValidationError("extra", str(exc)) from exc
        if values.get("total_amount") is not None:
            values["total_amount"] = _as_amount("total_amount", values["total_amount"])
        return cls(**values)


def _as_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _as_amount(field_name: str, value: Any) -> Any:
    """Decimal from a Decimal or its text form; floats are refused."""
    if isinstance(value, float):
        raise ValidationError(field_name, "floats are not accepted")
    if isinstance(value, str):
        try:
            return money_from_str(value)
        except ValueError as exc:
            raise ValidationError(field_name, str(exc)) from exc
    return value


@dataclass(frozen=True)
class ReceiptInput:
    """Evidence attached to a payment confirmation."""

    receipt_type: ReceiptType = ReceiptType.MANUAL
    url: str | None = None
    data: Mapping[str, Any] | None = None
    notes: str | None = None

    def __post_init__(self):
        if not isinstance(self.receipt_type, ReceiptType):
            object.__setattr__(self, "receipt_type", ReceiptType(self.receipt_type))
        if self.data is not None:
            object.__setattr__(self, "data", _freeze(self.data))

    def data_as_json(self) -> dict | None:
        return None if self.data is None else _thaw(self.data)


@dataclass(frozen=True)
class SplitPaymentInput:
    """Part of a paid installment settled through one payment method."""

    payment_method_id: UUID
    amount: Decimal

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SplitPaymentInput:
        """Build from ``{"payment_method_id": ..., "amount": "150.00"}``."""
        try:
            method_id = _as_uuid(data["payment_method_id"])
        except (KeyError, ValueError) as exc:
            raise ValidationError("payment_method_id", f"missing or malformed: {exc}") from exc
        if data.get("amount") is None:
            raise ValidationError("amount", "required")
        return cls(payment_method_id=method_id, amount=_as_amount("amount", data["amount"]))


@dataclass(frozen=True)
class OperationalCostInput:
    """An operational expense incurred while executing a sale."""

    description: str
    amount: Decimal
    cost_date: date
    cost_type_id: UUID | None = None
    payment_date: date | None = None
    service_provider_id: UUID | None = None
    notes: str | None = None


# =============================================================================
# Read views
# =============================================================================


@dataclass(frozen=True)
class SaleSnapshot:
    """Current state of a sale as seen at the end of a transaction."""

    id: UUID
    order_number: str
    sale_date: date
    customer_id: UUID
    seller_id: UUID
    payment_method_id: UUID
    service_type_id: UUID | None
    service_provider_id: UUID | None
    total_amount: Decimal
    installments_count: int
    status: str
    financial_status: str
    version: int
    notes: str | None = None
    return_reason: str | None = None
    responsible_operational_id: UUID | None = None
    responsible_financial_id: UUID | None = None
    service_provider_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class InstallmentView:
    """An installment with its effective (possibly derived) status."""

    id: UUID
    sale_id: UUID
    installment_number: int
    amount: Decimal
    due_date: date
    status: str
    payment_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentReceiptView:
    id: UUID
    installment_id: UUID
    receipt_type: str
    confirmed_by: UUID
    confirmation_date: datetime
    url: str | None = None
    data: Mapping[str, Any] | None = None
    notes: str | None = None

    def __post_init__(self):
        if self.data is not None:
            object.__setattr__(self, "data", _freeze(self.data))


@dataclass(frozen=True)
class OperationalCostView:
    id: UUID
    sale_id: UUID
    description: str
    amount: Decimal
    cost_date: date
    responsible_id: UUID
    cost_type_id: UUID | None = None
    payment_date: date | None = None
    service_provider_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One immutable audit log entry."""

    id: UUID
    sale_id: UUID
    seq: int
    track: StatusTrack
    from_status: str
    to_status: str
    user_id: UUID
    created_at: datetime
    hash: str
    prev_hash: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class FinancialSummary:
    """Collection position and net result of a sale."""

    sale_id: UUID
    total_amount: Decimal
    installment_count: int
    paid_count: int
    overdue_count: int
    paid_amount: Decimal
    outstanding_amount: Decimal
    costs_total: Decimal
    net_result: Decimal
    installments: tuple[InstallmentView, ...] = field(default=())
