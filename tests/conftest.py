"""
Pytest fixtures for the sales kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- Sessions, a deterministic clock and a recording notifier
- Catalog rows (customer, service types, provider, payment method, cost type)
- Actors for every role and a factory for sale payloads

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL).  Tables
  are dropped and recreated around every test.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from sales_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from sales_kernel.domain.clock import DeterministicClock
from sales_kernel.domain.dtos import SalePayload
from sales_kernel.domain.statuses import Actor, ChangeKind, Role
from sales_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from sales_kernel.models.catalog import (
    CostTypeModel,
    CustomerModel,
    PaymentMethodModel,
    ServiceProviderModel,
    ServiceTypeModel,
)
from sales_kernel.services.sale_orchestrator import SaleOrchestrator


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture sales_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_sale(...)
            assert any(r["message"] == "sale_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("sales_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    """DATABASE_URL if set, else a throwaway SQLite file."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'sales.db'}"


@pytest.fixture
def engine(database_url):
    """Initialize the engine and a clean schema for one test."""
    engine = init_engine_from_url(database_url, echo=False)
    drop_tables()
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(engine):
    """Provide a session for one test; closed afterwards."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-01-10 12:00 UTC."""
    return DeterministicClock(datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc))


class RecordingNotifier:
    """Notifier that remembers every call."""

    def __init__(self):
        self.calls: list[tuple[UUID, ChangeKind]] = []

    def notify(self, sale_id: UUID, change_kind: ChangeKind) -> None:
        self.calls.append((sale_id, change_kind))

    def kinds(self) -> list[ChangeKind]:
        return [kind for _, kind in self.calls]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(session, deterministic_clock, notifier) -> SaleOrchestrator:
    """Provide a SaleOrchestrator wired to the test session."""
    return SaleOrchestrator(session, clock=deterministic_clock, notifier=notifier)


# =============================================================================
# Reference data
# =============================================================================


@dataclass(frozen=True)
class Catalog:
    customer_id: UUID
    payment_method_id: UUID
    service_type_id: UUID
    provider_required_type_id: UUID
    provider_id: UUID
    second_provider_id: UUID
    cost_type_id: UUID


@pytest.fixture
def catalog(session) -> Catalog:
    """Committed lookup rows shared by most tests."""
    customer = CustomerModel(name="Acme Ltda", document="12.345.678/0001-90")
    method = PaymentMethodModel(name="Boleto")
    plain_type = ServiceTypeModel(name="Consulting", requires_service_provider=False)
    partner_type = ServiceTypeModel(name="Installation", requires_service_provider=True)
    provider = ServiceProviderModel(name="Partner One")
    second_provider = ServiceProviderModel(name="Partner Two")
    cost_type = CostTypeModel(name="Travel")
    session.add_all(
        [customer, method, plain_type, partner_type, provider, second_provider, cost_type]
    )
    session.commit()
    return Catalog(
        customer_id=customer.id,
        payment_method_id=method.id,
        service_type_id=plain_type.id,
        provider_required_type_id=partner_type.id,
        provider_id=provider.id,
        second_provider_id=second_provider.id,
        cost_type_id=cost_type.id,
    )


# =============================================================================
# Actors
# =============================================================================


def _actor(role: Role) -> Actor:
    return Actor(actor_id=uuid4(), role=role)


@pytest.fixture
def seller() -> Actor:
    return _actor(Role.VENDEDOR)


@pytest.fixture
def other_seller() -> Actor:
    return _actor(Role.VENDEDOR)


@pytest.fixture
def operator() -> Actor:
    return _actor(Role.OPERACIONAL)


@pytest.fixture
def finance() -> Actor:
    return _actor(Role.FINANCEIRO)


@pytest.fixture
def supervisor() -> Actor:
    return _actor(Role.SUPERVISOR)


@pytest.fixture
def admin() -> Actor:
    return _actor(Role.ADMIN)


# =============================================================================
# Sales
# =============================================================================


@pytest.fixture
def make_payload(catalog):
    """Factory for SalePayload with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> SalePayload:
        counter["n"] += 1
        values = dict(
            order_number=f"OS-{counter['n']:04d}",
            sale_date=date(2024, 1, 10),
            customer_id=catalog.customer_id,
            payment_method_id=catalog.payment_method_id,
            service_type_id=catalog.service_type_id,
            total_amount=Decimal("1000.00"),
            installments_count=3,
            first_due_date=date(2024, 1, 15),
        )
        values.update(overrides)
        return SalePayload(**values)

    return _make


@pytest.fixture
def sale(orchestrator, make_payload, seller):
    """A committed 1000.00 sale in 3 installments, sold by ``seller``."""
    return orchestrator.create_sale(make_payload(), seller)


@pytest.fixture
def installment_ids(session, sale):
    """Installment ids of ``sale`` ordered by number."""
    from sales_kernel.services.installment_ledger import InstallmentLedger

    return [row.id for row in InstallmentLedger(session).installments(sale.id)]
