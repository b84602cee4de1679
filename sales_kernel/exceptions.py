"""
Typed exception hierarchy for the sales kernel.

Every error surfaced by the kernel is a subclass of ``SalesKernelError``
and carries:
  1. a TYPED class (catch by type, never by parsing messages)
  2. a ``code`` class attribute (machine-readable, API-safe)
  3. structured attributes describing the failure

Example:
    try:
        orchestrator.request_financial_transition(sale_id, "completed", actor)
    except IncompletePaymentsError as e:
        api_response(code=e.code, paid=e.paid_count, total=e.installment_count)
    except PreconditionFailedError as e:
        api_response(code=e.code, guard=e.guard)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SalesKernelError (base)
    |
    +-- ValidationError
    |
    +-- IllegalTransitionError
    |   +-- SaleCanceledError
    |
    +-- PermissionDeniedError
    |
    +-- PreconditionFailedError
    |   +-- IncompletePaymentsError
    |   +-- OperationalIncompleteError
    |   +-- FinancialDataLockedError
    |   +-- PaidInstallmentsExistError
    |   +-- InstallmentNotPaidError
    |
    +-- AlreadyPaidError
    |
    +-- NotFoundError
    |   +-- SaleNotFoundError
    |   +-- InstallmentNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                          | When Raised
------------------------------|---------------------------------------------
VALIDATION_ERROR              | Malformed or missing input
ILLEGAL_TRANSITION            | Requested status change not in the table
SALE_CANCELED                 | Any mutation attempted on a canceled sale
PERMISSION_DENIED             | Role (or ownership) lacks authority
PRECONDITION_FAILED           | Legal transition blocked by a business rule
INCOMPLETE_PAYMENTS           | Financial completion with unpaid installments
OPERATIONAL_INCOMPLETE        | Settlement while operationally unresolved
FINANCIAL_DATA_LOCKED         | Financial fields changed after finance began
PAID_INSTALLMENTS_EXIST       | Re-amortization over paid installments
INSTALLMENT_NOT_PAID          | Split payments on an unpaid installment
ALREADY_PAID                  | Duplicate payment confirmation
SALE_NOT_FOUND                | Sale id does not exist
INSTALLMENT_NOT_FOUND         | Installment id does not exist
OPTIMISTIC_LOCK_CONFLICT      | Concurrent modification of the same sale
IMMUTABILITY_VIOLATION        | Update/delete of an append-only record
AUDIT_CHAIN_BROKEN            | Status history hash chain mismatch
"""


class SalesKernelError(Exception):
    """
    Base exception for all sales kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "SALES_KERNEL_ERROR"


# Input validation


class ValidationError(SalesKernelError):
    """Malformed or missing input; recoverable by correcting the input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Transition legality


class IllegalTransitionError(SalesKernelError):
    """Requested state change is not in the allowed transition table."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, sale_id: str, track: str, from_status: str, to_status: str):
        self.sale_id = sale_id
        self.track = track
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Sale {sale_id}: {track} transition {from_status!r} -> {to_status!r} "
            f"is not allowed"
        )


class SaleCanceledError(IllegalTransitionError):
    """A canceled sale accepts no further mutation of any kind."""

    code: str = "SALE_CANCELED"

    def __init__(self, sale_id: str, attempted: str):
        self.sale_id = sale_id
        self.track = "operational"
        self.from_status = "canceled"
        self.to_status = attempted
        self.attempted = attempted
        SalesKernelError.__init__(
            self, f"Sale {sale_id} is canceled; {attempted} rejected"
        )


class PermissionDeniedError(SalesKernelError):
    """The acting role lacks authority for the requested operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, role: str, operation: str, reason: str = ""):
        self.actor_id = actor_id
        self.role = role
        self.operation = operation
        self.reason = reason
        message = f"Role {role!r} (actor {actor_id}) may not {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Business-rule gates


class PreconditionFailedError(SalesKernelError):
    """Transition is structurally legal but a business rule blocks it now."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, sale_id: str, guard: str, reason: str):
        self.sale_id = sale_id
        self.guard = guard
        self.reason = reason
        super().__init__(f"Sale {sale_id}: {guard} not satisfied - {reason}")


class IncompletePaymentsError(PreconditionFailedError):
    """Financial completion requested while installments remain unpaid."""

    code: str = "INCOMPLETE_PAYMENTS"

    def __init__(self, sale_id: str, paid_count: int, installment_count: int):
        self.paid_count = paid_count
        self.installment_count = installment_count
        super().__init__(
            sale_id,
            "all_installments_paid",
            f"{paid_count} of {installment_count} installments paid",
        )


class OperationalIncompleteError(PreconditionFailedError):
    """Settlement requested while the operational track is not completed."""

    code: str = "OPERATIONAL_INCOMPLETE"

    def __init__(self, sale_id: str, operational_status: str):
        self.operational_status = operational_status
        super().__init__(
            sale_id,
            "operationally_completed",
            f"operational status is {operational_status!r}, expected 'completed'",
        )


class FinancialDataLockedError(PreconditionFailedError):
    """Financial fields may not change once finance has started its analysis."""

    code: str = "FINANCIAL_DATA_LOCKED"

    def __init__(self, sale_id: str, financial_status: str):
        self.financial_status = financial_status
        super().__init__(
            sale_id,
            "financial_data_unlocked",
            f"financial status is {financial_status!r}; amounts and installments are frozen",
        )


class PaidInstallmentsExistError(PreconditionFailedError):
    """Re-amortization would discard recorded payments."""

    code: str = "PAID_INSTALLMENTS_EXIST"

    def __init__(self, sale_id: str, paid_count: int):
        self.paid_count = paid_count
        super().__init__(
            sale_id,
            "no_paid_installments",
            f"{paid_count} installment(s) already paid",
        )


class InstallmentNotPaidError(PreconditionFailedError):
    """Split payments can only be attached to a confirmed installment."""

    code: str = "INSTALLMENT_NOT_PAID"

    def __init__(self, sale_id: str, installment_id: str, status: str):
        self.installment_id = installment_id
        self.status = status
        super().__init__(
            sale_id,
            "installment_paid",
            f"installment {installment_id} is {status!r}, expected 'paid'",
        )


# Idempotency


class AlreadyPaidError(SalesKernelError):
    """Installment payment was already confirmed."""

    code: str = "ALREADY_PAID"

    def __init__(self, installment_id: str, payment_date: str | None):
        self.installment_id = installment_id
        self.payment_date = payment_date
        super().__init__(
            f"Installment {installment_id} already paid on {payment_date}"
        )


# Lookups


class NotFoundError(SalesKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class SaleNotFoundError(NotFoundError):
    """Sale with given ID was not found."""

    code: str = "SALE_NOT_FOUND"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")


class InstallmentNotFoundError(NotFoundError):
    """Installment with given ID was not found."""

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, installment_id: str):
        self.installment_id = installment_id
        super().__init__(f"Installment not found: {installment_id}")


# Concurrency


class ConcurrencyError(SalesKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """The sale row changed between read and write."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}; reload and retry"
        )


# Append-only records


class ImmutabilityError(SalesKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class AuditError(SalesKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Status history hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, sale_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.sale_id = sale_id
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Status history chain broken for sale {sale_id} at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
