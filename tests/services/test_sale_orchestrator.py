"""
Tests for SaleOrchestrator.

Covers:
- create_sale(): example scenario, seller defaulting, validation, no
  partial sale on failure
- confirm_installment_payment(): roles, idempotency, canceled sale
- add_split_payments(): receipts per method, paid-only, roles, canceled sale
- record_operational_cost(): roles, amount validation, net result
- reamortize_installments(): explicit re-plan, audit entry, paid guard
- purge_sale(): cascading removal
- notifier: called after commit only, failures logged and swallowed
- structured logging of each unit of work
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from sales_kernel.domain.dtos import OperationalCostInput, ReceiptInput, SplitPaymentInput
from sales_kernel.domain.statuses import ChangeKind
from sales_kernel.exceptions import (
    AlreadyPaidError,
    InstallmentNotFoundError,
    InstallmentNotPaidError,
    PaidInstallmentsExistError,
    PermissionDeniedError,
    SaleCanceledError,
    SaleNotFoundError,
    ValidationError,
)
from sales_kernel.models.installment import InstallmentModel, PaymentReceiptModel
from sales_kernel.models.sale import SaleModel
from sales_kernel.models.status_history import StatusHistoryModel
from sales_kernel.selectors.sale_selector import SaleSelector
from sales_kernel.services.notification import LoggingNotifier, SaleNotifier
from sales_kernel.services.sale_orchestrator import SaleOrchestrator


def _count(session, model, *criteria):
    return session.execute(select(func.count()).select_from(model).where(*criteria)).scalar_one()


class TestCreateSale:
    def test_example_scenario(self, session, orchestrator, sale, seller):
        assert sale.status == "pending"
        assert sale.financial_status == "pending"
        assert sale.seller_id == seller.actor_id
        assert sale.total_amount == Decimal("1000.00")

        views = SaleSelector(session).installments(sale.id, today=date(2024, 1, 10))
        assert [(v.installment_number, v.amount, v.due_date, v.status) for v in views] == [
            (1, Decimal("333.33"), date(2024, 1, 15), "pending"),
            (2, Decimal("333.33"), date(2024, 2, 15), "pending"),
            (3, Decimal("333.34"), date(2024, 3, 15), "pending"),
        ]
        (entry,) = orchestrator.history(sale.id)
        assert (entry.from_status, entry.to_status) == ("", "pending")

    def test_notifies_after_commit(self, orchestrator, sale, notifier):
        assert notifier.calls == [(sale.id, ChangeKind.SALE_CREATED)]

    def test_admin_must_name_seller(self, orchestrator, make_payload, admin):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.create_sale(make_payload(), admin)
        assert exc_info.value.field == "seller_id"

    def test_supervisor_creates_for_seller(self, orchestrator, make_payload, supervisor, seller):
        sale = orchestrator.create_sale(make_payload(seller_id=seller.actor_id), supervisor)
        assert sale.seller_id == seller.actor_id

    @pytest.mark.parametrize("actor_fixture", ["operator", "finance"])
    def test_other_roles_cannot_sell(self, request, orchestrator, make_payload, actor_fixture):
        actor = request.getfixturevalue(actor_fixture)
        with pytest.raises(PermissionDeniedError):
            orchestrator.create_sale(make_payload(), actor)

    def test_duplicate_order_number(self, session, orchestrator, make_payload, seller):
        orchestrator.create_sale(make_payload(order_number="OS-DUP"), seller)

        with pytest.raises(ValidationError) as exc_info:
            orchestrator.create_sale(make_payload(order_number="OS-DUP"), seller)

        assert exc_info.value.field == "order_number"
        assert _count(session, SaleModel, SaleModel.order_number == "OS-DUP") == 1

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"customer_id": uuid4()}, "customer_id"),
            ({"payment_method_id": uuid4()}, "payment_method_id"),
            ({"service_type_id": uuid4()}, "service_type_id"),
            ({"service_provider_id": uuid4()}, "service_provider_id"),
            ({"order_number": "  "}, "order_number"),
            ({"total_amount": 1000.0}, "total_amount"),
            ({"total_amount": Decimal("-5.00")}, "total_amount"),
            ({"installments_count": 0}, "installments_count"),
            ({"first_due_date": "soon"}, "first_due_date"),
        ],
    )
    def test_invalid_payload_leaves_nothing(self, session, orchestrator, make_payload, seller, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.create_sale(make_payload(**overrides), seller)

        assert exc_info.value.field == field
        assert _count(session, SaleModel) == 0
        assert _count(session, InstallmentModel) == 0
        assert _count(session, StatusHistoryModel) == 0

    def test_zero_total_allowed(self, session, orchestrator, make_payload, seller):
        sale = orchestrator.create_sale(make_payload(total_amount=Decimal("0.00")), seller)
        views = SaleSelector(session).installments(sale.id)
        assert [v.amount for v in views] == [Decimal("0.00")] * 3

    def test_iso_strings_with_time_keep_calendar_day(self, session, orchestrator, make_payload, seller):
        sale = orchestrator.create_sale(
            make_payload(sale_date="2024-01-10T23:00:00.000Z", first_due_date="2024-01-31T00:00:00Z"),
            seller,
        )
        assert sale.sale_date == date(2024, 1, 10)
        dues = [v.due_date for v in SaleSelector(session).installments(sale.id)]
        assert dues == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]


class TestConfirmInstallmentPayment:
    def test_confirms_and_notifies(self, orchestrator, sale, finance, installment_ids, notifier):
        view = orchestrator.confirm_installment_payment(
            installment_ids[0], finance, "2024-01-15", ReceiptInput(notes="PIX")
        )

        assert view.status == "paid"
        assert view.payment_date == date(2024, 1, 15)
        assert notifier.kinds()[-1] is ChangeKind.INSTALLMENT_PAID
        assert orchestrator.get_sale(sale.id).financial_status == "pending"

    def test_bumps_sale_version(self, orchestrator, sale, finance, installment_ids):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))
        assert orchestrator.get_sale(sale.id).version == sale.version + 1

    def test_second_confirmation_rejected(self, session, orchestrator, finance, installment_ids, notifier):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))
        calls_before = len(notifier.calls)

        with pytest.raises(AlreadyPaidError):
            orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 2, 1))

        assert len(notifier.calls) == calls_before
        assert _count(
            session, PaymentReceiptModel, PaymentReceiptModel.installment_id == installment_ids[0]
        ) == 1

    def test_sellers_cannot_confirm(self, orchestrator, seller, installment_ids):
        with pytest.raises(PermissionDeniedError):
            orchestrator.confirm_installment_payment(installment_ids[0], seller, date(2024, 1, 15))

    def test_unknown_installment(self, orchestrator, finance):
        with pytest.raises(InstallmentNotFoundError):
            orchestrator.confirm_installment_payment(uuid4(), finance, date(2024, 1, 15))

    def test_canceled_sale_rejects_payment(self, orchestrator, sale, admin, finance, installment_ids):
        orchestrator.request_operational_transition(sale.id, "canceled", admin)

        with pytest.raises(SaleCanceledError):
            orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))


class TestSplitPayments:
    def test_receipts_per_method_and_notifies(
        self, session, orchestrator, sale, finance, catalog, installment_ids, notifier
    ):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))
        version_before = orchestrator.get_sale(sale.id).version

        views = orchestrator.add_split_payments(
            installment_ids[0],
            finance,
            [
                {"payment_method_id": str(catalog.payment_method_id), "amount": "300.00"},
                {"payment_method_id": str(catalog.payment_method_id), "amount": "33.33"},
            ],
        )

        assert [v.receipt_type for v in views] == ["split_payment", "split_payment"]
        assert sorted(v.data["amount"] for v in views) == ["300.00", "33.33"]
        assert all(v.data["payment_method_name"] == "Boleto" for v in views)
        assert notifier.kinds()[-1] is ChangeKind.SPLIT_PAYMENTS_ADDED
        assert orchestrator.get_sale(sale.id).version == version_before + 1

        history = SaleSelector(session).receipts(installment_ids[0])
        assert sorted(r.receipt_type for r in history) == ["manual", "split_payment", "split_payment"]

    def test_unpaid_installment_refused(
        self, session, orchestrator, finance, catalog, installment_ids, notifier
    ):
        calls_before = len(notifier.calls)

        with pytest.raises(InstallmentNotPaidError):
            orchestrator.add_split_payments(
                installment_ids[0],
                finance,
                [SplitPaymentInput(catalog.payment_method_id, Decimal("333.33"))],
            )

        assert len(notifier.calls) == calls_before
        assert _count(
            session, PaymentReceiptModel, PaymentReceiptModel.installment_id == installment_ids[0]
        ) == 0

    def test_float_amount_in_mapping_rejected(self, orchestrator, finance, catalog, installment_ids):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))

        with pytest.raises(ValidationError) as exc_info:
            orchestrator.add_split_payments(
                installment_ids[0],
                finance,
                [{"payment_method_id": str(catalog.payment_method_id), "amount": 100.0}],
            )
        assert exc_info.value.field == "amount"

    def test_operators_cannot_split(self, orchestrator, operator, catalog, installment_ids):
        with pytest.raises(PermissionDeniedError):
            orchestrator.add_split_payments(
                installment_ids[0],
                operator,
                [SplitPaymentInput(catalog.payment_method_id, Decimal("1.00"))],
            )

    def test_canceled_sale_rejects_splits(
        self, orchestrator, sale, admin, finance, catalog, installment_ids
    ):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))
        orchestrator.request_operational_transition(sale.id, "canceled", admin)

        with pytest.raises(SaleCanceledError):
            orchestrator.add_split_payments(
                installment_ids[0],
                finance,
                [SplitPaymentInput(catalog.payment_method_id, Decimal("333.33"))],
            )


class TestOperationalCosts:
    def _cost(self, catalog, amount="150.00", **overrides):
        values = dict(
            description="Technician travel",
            amount=Decimal(amount),
            cost_date=date(2024, 1, 12),
            cost_type_id=catalog.cost_type_id,
        )
        values.update(overrides)
        return OperationalCostInput(**values)

    def test_records_cost_and_net_result(self, session, orchestrator, sale, operator, catalog, notifier):
        view = orchestrator.record_operational_cost(sale.id, operator, self._cost(catalog))
        orchestrator.record_operational_cost(
            sale.id, operator, self._cost(catalog, "50.25", service_provider_id=catalog.provider_id)
        )

        assert view.responsible_id == operator.actor_id
        assert view.amount == Decimal("150.00")
        summary = SaleSelector(session).financial_summary(sale.id)
        assert summary.costs_total == Decimal("200.25")
        assert summary.net_result == Decimal("799.75")
        assert notifier.kinds()[-1] is ChangeKind.OPERATIONAL_COST_RECORDED

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00"), 10.0])
    def test_amount_must_be_positive_decimal(self, orchestrator, sale, operator, catalog, amount):
        cost = self._cost(catalog)
        cost = OperationalCostInput(
            description=cost.description, amount=amount, cost_date=cost.cost_date
        )
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.record_operational_cost(sale.id, operator, cost)
        assert exc_info.value.field == "amount"

    def test_unknown_cost_type(self, orchestrator, sale, operator, catalog):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.record_operational_cost(
                sale.id, operator, self._cost(catalog, cost_type_id=uuid4())
            )
        assert exc_info.value.field == "cost_type_id"

    def test_seller_cannot_record(self, orchestrator, sale, seller, catalog):
        with pytest.raises(PermissionDeniedError):
            orchestrator.record_operational_cost(sale.id, seller, self._cost(catalog))

    def test_unknown_sale(self, orchestrator, operator, catalog):
        with pytest.raises(SaleNotFoundError):
            orchestrator.record_operational_cost(uuid4(), operator, self._cost(catalog))


class TestReamortize:
    def test_rebuilds_plan_and_audits(self, session, orchestrator, sale, admin, notifier):
        views = orchestrator.reamortize_installments(
            sale.id, admin, installments_count=4, first_due_date="2024-02-29", note="customer request"
        )

        assert [v.amount for v in views] == [Decimal("250.00")] * 4
        assert [v.due_date for v in views] == [
            date(2024, 2, 29),
            date(2024, 3, 29),
            date(2024, 4, 29),
            date(2024, 5, 29),
        ]
        assert orchestrator.get_sale(sale.id).installments_count == 4
        last = orchestrator.history(sale.id)[-1]
        assert last.track.value == "installments"
        assert (last.from_status, last.to_status, last.notes) == ("3", "4", "customer request")
        assert notifier.kinds()[-1] is ChangeKind.INSTALLMENTS_REPLACED
        assert orchestrator.verify_history(sale.id)

    def test_keeps_start_date_by_default(self, orchestrator, sale, admin):
        views = orchestrator.reamortize_installments(sale.id, admin, installments_count=2)
        assert [v.due_date for v in views] == [date(2024, 1, 15), date(2024, 2, 15)]

    def test_refused_with_paid_installments(self, orchestrator, sale, admin, finance, installment_ids):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))

        with pytest.raises(PaidInstallmentsExistError) as exc_info:
            orchestrator.reamortize_installments(sale.id, admin, installments_count=2)
        assert exc_info.value.paid_count == 1

    def test_admin_only(self, orchestrator, sale, supervisor):
        with pytest.raises(PermissionDeniedError):
            orchestrator.reamortize_installments(sale.id, supervisor, installments_count=2)

    def test_invalid_count_rolls_back(self, session, orchestrator, sale, admin, installment_ids):
        with pytest.raises(ValidationError):
            orchestrator.reamortize_installments(sale.id, admin, installments_count=0)
        assert [r.id for r in SaleSelector(session).installments(sale.id)] == installment_ids


class TestPurgeSale:
    def test_removes_everything(self, session, orchestrator, sale, admin, finance, operator, catalog, installment_ids):
        orchestrator.confirm_installment_payment(installment_ids[0], finance, date(2024, 1, 15))
        orchestrator.record_operational_cost(
            sale.id,
            operator,
            OperationalCostInput(description="Parts", amount=Decimal("10.00"), cost_date=date(2024, 1, 11)),
        )

        orchestrator.purge_sale(sale.id, admin)

        with pytest.raises(SaleNotFoundError):
            orchestrator.get_sale(sale.id)
        assert _count(session, InstallmentModel) == 0
        assert _count(session, PaymentReceiptModel) == 0
        assert _count(session, StatusHistoryModel) == 0

    def test_admin_only(self, orchestrator, sale, supervisor):
        with pytest.raises(PermissionDeniedError):
            orchestrator.purge_sale(sale.id, supervisor)
        assert orchestrator.get_sale(sale.id).id == sale.id


class ExplodingNotifier:
    def notify(self, sale_id, change_kind):
        raise RuntimeError("push channel down")


class TestNotifierAndLogging:
    def test_notifier_failure_is_logged_not_raised(
        self, session, deterministic_clock, make_payload, seller, captured_logs
    ):
        orchestrator = SaleOrchestrator(
            session, clock=deterministic_clock, notifier=ExplodingNotifier()
        )

        sale = orchestrator.create_sale(make_payload(), seller)

        assert orchestrator.get_sale(sale.id).status == "pending"
        failures = [r for r in captured_logs() if r["message"] == "sale_notification_failed"]
        assert len(failures) == 1
        assert failures[0]["change_kind"] == "sale_created"
        assert failures[0]["level"] == "ERROR"

    def test_logging_notifier_publishes_change(
        self, session, deterministic_clock, make_payload, seller, captured_logs
    ):
        notifier = LoggingNotifier()
        assert isinstance(notifier, SaleNotifier)
        orchestrator = SaleOrchestrator(session, clock=deterministic_clock, notifier=notifier)

        sale = orchestrator.create_sale(make_payload(), seller)

        published = [r for r in captured_logs() if r["message"] == "sale_change_published"]
        assert len(published) == 1
        assert published[0]["sale_id"] == str(sale.id)
        assert published[0]["change_kind"] == "sale_created"

    def test_failed_operation_does_not_notify(self, orchestrator, sale, operator, notifier):
        calls_before = len(notifier.calls)
        with pytest.raises(PermissionDeniedError):
            orchestrator.request_operational_transition(sale.id, "canceled", operator)
        assert len(notifier.calls) == calls_before

    def test_unit_of_work_logged_with_context(self, orchestrator, sale, operator, captured_logs):
        orchestrator.request_operational_transition(sale.id, "in_progress", operator)

        messages = [r["message"] for r in captured_logs()]
        started = messages.index("operational_transition_started")
        assert "operational_transition_applied" in messages[started:]
        assert messages[-1] == "operational_transition_committed"
        committed = captured_logs()[-1]
        assert committed["sale_id"] == str(sale.id)
        assert committed["role"] == "operacional"

    def test_rollback_logged(self, orchestrator, sale, operator, captured_logs):
        with pytest.raises(PermissionDeniedError):
            orchestrator.request_operational_transition(sale.id, "canceled", operator)

        rolled_back = [
            r for r in captured_logs() if r["message"] == "operational_transition_rolled_back"
        ]
        assert rolled_back and rolled_back[0]["exc_code"] == "PERMISSION_DENIED"


class TestReads:
    def test_unknown_sale(self, orchestrator):
        with pytest.raises(SaleNotFoundError):
            orchestrator.get_sale(uuid4())

    def test_unknown_sale_transition(self, orchestrator, operator):
        with pytest.raises(SaleNotFoundError):
            orchestrator.request_operational_transition(uuid4(), "in_progress", operator)
