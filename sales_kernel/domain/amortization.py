"""
Amortization engine (``sales_kernel.domain.amortization``).

Responsibility
--------------
Split a sale's total amount into N installments with monthly due dates.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  The installment
ledger persists whatever plan this module returns.

Invariants enforced
-------------------
* Sum of installment amounts equals ``total_amount`` exactly.
* Installments ``1..N-1`` carry the banker's-rounded base amount; the last
  installment absorbs the rounding remainder.
* Installment ``i`` falls ``i-1`` calendar months after the first due date,
  clamped to the last day of the target month.
* Same inputs always produce the same plan.

Failure modes
-------------
* ``ValidationError`` for a non-Decimal total (floats are refused), a
  negative total, a total wider than the Money column, a count below 1
  or a first due date that is not a date.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, localcontext

from sales_kernel.db.types import MAX_MONEY_INTEGER_DIGITS, MONEY_DECIMAL_PLACES, round_money
from sales_kernel.exceptions import ValidationError

_PLAN_PRECISION = 60


@dataclass(frozen=True)
class InstallmentPlanLine:
    """One planned installment, numbered from 1."""

    installment_number: int
    amount: Decimal
    due_date: date


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by whole calendar months, clamping to month end.

    ``add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)``
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def generate_installments(
    total_amount: Decimal,
    count: int,
    first_due_date: date,
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> tuple[InstallmentPlanLine, ...]:
    """
    Build the installment plan for a sale.

    Preconditions:
        - ``total_amount`` is a ``Decimal`` >= 0.
        - ``count`` is an ``int`` >= 1.
        - ``first_due_date`` is a calendar ``date``.

    Postconditions:
        - Exactly ``count`` lines numbered 1..count.
        - ``sum(line.amount) == total_amount``.

    Example:
        >>> [l.amount for l in generate_installments(Decimal("1000.00"), 3, date(2024, 1, 15))]
        [Decimal('333.33'), Decimal('333.33'), Decimal('333.34')]
    """
    if isinstance(total_amount, float) or not isinstance(total_amount, Decimal):
        raise ValidationError(
            "total_amount",
            f"must be a Decimal, got {type(total_amount).__name__}",
        )
    if not total_amount.is_finite():
        raise ValidationError("total_amount", "must be a finite amount")
    if total_amount < 0:
        raise ValidationError("total_amount", "must not be negative")
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError("installments_count", "must be an integer >= 1")
    if isinstance(first_due_date, datetime) or not isinstance(first_due_date, date):
        raise ValidationError("first_due_date", "must be a calendar date")

    if total_amount.adjusted() >= MAX_MONEY_INTEGER_DIGITS:
        raise ValidationError(
            "total_amount",
            f"must have at most {MAX_MONEY_INTEGER_DIGITS} integer digits",
        )

    # The default 28-digit context cannot quantize totals near the column limit.
    with localcontext() as ctx:
        ctx.prec = _PLAN_PRECISION
        try:
            base = round_money(total_amount / count, decimal_places)
            last = total_amount - base * (count - 1)
        except InvalidOperation as exc:
            raise ValidationError("total_amount", f"cannot be split: {exc!r}") from exc

    lines = []
    for number in range(1, count + 1):
        amount = last if number == count else base
        lines.append(
            InstallmentPlanLine(
                installment_number=number,
                amount=amount,
                due_date=add_months(first_due_date, number - 1),
            )
        )
    return tuple(lines)
