"""
Concurrent writers on one sale.

Two sessions interleave deterministically: session A loads the sale row
and keeps it, session B commits a change, then A tries to write from its
stale copy.  The sale's version column turns A's write into
OptimisticLockError and nothing from A is persisted.  After the rollback
A reloads the row, so a retry succeeds.

The session identity map only holds weak references, so each test keeps
A's SaleModel in a local variable until A writes.
"""

from datetime import date

import pytest

from sales_kernel.exceptions import OptimisticLockError
from sales_kernel.models.sale import SaleModel
from sales_kernel.services.installment_ledger import InstallmentLedger
from sales_kernel.services.sale_orchestrator import SaleOrchestrator


@pytest.fixture
def session_pair(session_factory, sale):
    session_a = session_factory()
    session_b = session_factory()
    yield session_a, session_b
    session_a.close()
    session_b.close()


@pytest.fixture
def two_orchestrators(session_pair, deterministic_clock):
    session_a, session_b = session_pair
    return (
        SaleOrchestrator(session_a, clock=deterministic_clock),
        SaleOrchestrator(session_b, clock=deterministic_clock),
    )


def _hold_sale(session, sale_id) -> SaleModel:
    held = session.get(SaleModel, sale_id)
    assert held is not None
    return held


class TestStaleOperationalWrite:
    def test_stale_transition_rejected(
        self, session_pair, two_orchestrators, sale, operator, captured_logs
    ):
        orch_a, orch_b = two_orchestrators
        held = _hold_sale(session_pair[0], sale.id)
        assert held.status == "pending"

        orch_b.request_operational_transition(sale.id, "in_progress", operator)

        with pytest.raises(OptimisticLockError) as exc_info:
            orch_a.request_operational_transition(
                sale.id, "returned", operator, {"return_reason": "stale view"}
            )

        assert exc_info.value.entity_id == str(sale.id)
        assert any(r["message"] == "optimistic_lock_conflict" for r in captured_logs())

        current = orch_b.get_sale(sale.id)
        assert current.status == "in_progress"
        assert current.return_reason is None
        assert [e.to_status for e in orch_b.history(sale.id)] == ["pending", "in_progress"]

    def test_retry_after_conflict_sees_fresh_state(
        self, session_pair, two_orchestrators, sale, operator
    ):
        orch_a, orch_b = two_orchestrators
        held = _hold_sale(session_pair[0], sale.id)

        orch_b.request_operational_transition(sale.id, "in_progress", operator)

        with pytest.raises(OptimisticLockError):
            orch_a.request_operational_transition(sale.id, "in_progress", operator)

        # The rollback expired A's copy; the next access reloads it.
        assert held.status == "in_progress"
        result = orch_a.request_operational_transition(sale.id, "completed", operator)
        assert result.status == "completed"
        assert orch_a.verify_history(sale.id)


class TestConcurrentPayments:
    def test_payments_on_one_sale_serialize(
        self, session_factory, session_pair, two_orchestrators, sale, finance, installment_ids
    ):
        orch_a, orch_b = two_orchestrators
        held = _hold_sale(session_pair[0], sale.id)

        orch_b.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))

        with pytest.raises(OptimisticLockError):
            orch_a.confirm_installment_payment(installment_ids[1], finance, date(2024, 2, 15))

        check = session_factory()
        try:
            paid, total = InstallmentLedger(check).payment_counts(sale.id)
        finally:
            check.close()
        assert (paid, total) == (1, 3)
        assert held.id == sale.id

    def test_completion_after_concurrent_payment_reads_committed_counts(
        self, session_pair, two_orchestrators, sale, finance, installment_ids
    ):
        orch_a, orch_b = two_orchestrators
        orch_a.request_financial_transition(sale.id, "in_progress", finance)
        for installment_id in installment_ids[:2]:
            orch_a.confirm_installment_payment(installment_id, finance, date(2024, 1, 15))

        # B pays the last installment while A still holds its own copy.
        held = _hold_sale(session_pair[0], sale.id)
        orch_b.confirm_installment_payment(installment_ids[2], finance, date(2024, 3, 15))

        with pytest.raises(OptimisticLockError):
            orch_a.request_financial_transition(sale.id, "completed", finance)

        result = orch_a.request_financial_transition(sale.id, "completed", finance)
        assert result.financial_status == "completed"
        assert held.financial_status == "completed"
