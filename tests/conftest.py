"""
Pytest fixtures for the billing test suite.

Provides:
- Structured logging configured once per session, plus log capture
- Deterministic clock
- In-memory and SQLite-backed document stores
- Invoice / payment / order factories and a store seeding helper
"""

import json
import logging
from datetime import date, datetime, timezone
from io import StringIO

import pytest

from billing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.documents import (
    Invoice,
    InvoiceStatus,
    Order,
    OrderStatus,
    Payment,
    PaymentApplication,
    PaymentMethod,
)
from billing_kernel.domain.values import Money
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_store import (
    CreateInvoice,
    CreateOrder,
    CreatePayment,
    InMemoryDocumentStore,
    SqlDocumentStore,
)

CUSTOMER = "cust-1"
OTHER_CUSTOMER = "cust-2"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow (threads, many hypothesis examples)"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocation_service):
            allocation_service.allocate_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "allocation_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
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
# Clock and stores
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
def sql_session_factory():
    """Fresh in-memory SQLite database with all tables."""
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    yield get_session_factory()
    drop_tables(engine)
    reset_engine()


@pytest.fixture
def sql_store(sql_session_factory):
    return SqlDocumentStore(sql_session_factory)


# =============================================================================
# Document factories
# =============================================================================


@pytest.fixture
def make_invoice():
    """
    Build an Invoice. Amounts accept anything ``Money.of`` accepts.

    ``paid`` sets amount_paid and derives status and balance from it.
    """

    def _make(
        invoice_id: str,
        amount="100.00",
        invoice_date: date = date(2024, 1, 1),
        due_date: date | None = None,
        customer_id: str = CUSTOMER,
        invoice_number: str | None = None,
        paid="0",
        tax="0",
        status: InvoiceStatus | None = None,
        created_at: datetime | None = None,
        version: int = 1,
    ) -> Invoice:
        total = Money.of(amount)
        tax_amount = Money.of(tax)
        amount_paid = Money.of(paid)
        balance = total - amount_paid
        if status is None:
            if amount_paid.is_zero:
                status = InvoiceStatus.SENT
            elif balance.is_zero:
                status = InvoiceStatus.PAID
            else:
                status = InvoiceStatus.PARTIALLY_PAID
        return Invoice(
            id=invoice_id,
            customer_id=customer_id,
            invoice_number=invoice_number or f"INV-{invoice_id}",
            invoice_date=invoice_date,
            subtotal=total - tax_amount,
            tax_amount=tax_amount,
            total=total,
            amount_paid=amount_paid,
            balance_due=balance,
            due_date=due_date,
            status=status,
            created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
            version=version,
        )

    return _make


@pytest.fixture
def make_payment():
    """Build a Payment; ``applied`` is a list of (invoice_id, invoice_number, amount)."""

    def _make(
        payment_id: str,
        amount="100.00",
        payment_date: date = date(2024, 2, 1),
        applied=(),
        customer_id: str = CUSTOMER,
        method: PaymentMethod = PaymentMethod.CASH,
        created_at: datetime | None = None,
    ) -> Payment:
        applications = tuple(
            PaymentApplication(invoice_id=i, invoice_number=n, amount_applied=Money.of(a))
            for i, n, a in applied
        )
        total = Money.of(amount)
        applied_total = sum((a.amount_applied for a in applications), Money(0))
        return Payment(
            id=payment_id,
            customer_id=customer_id,
            payment_date=payment_date,
            amount=total,
            method=method,
            applications=applications,
            unapplied_amount=total - applied_total,
            created_at=created_at or datetime(2024, 2, 1, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def make_order():
    def _make(
        order_id: str,
        total="50.00",
        order_date: date = date(2024, 1, 10),
        status: OrderStatus = OrderStatus.ORDERED,
        customer_id: str = CUSTOMER,
    ) -> Order:
        return Order(
            id=order_id,
            customer_id=customer_id,
            order_number=f"ORD-{order_id}",
            order_date=order_date,
            total=Money.of(total),
            status=status,
            created_at=datetime(2024, 1, 10, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def seed():
    """Write documents into a store in one batch."""

    def _seed(store, *documents) -> None:
        writes = []
        for doc in documents:
            if isinstance(doc, Invoice):
                writes.append(CreateInvoice(doc))
            elif isinstance(doc, Payment):
                writes.append(CreatePayment(doc))
            elif isinstance(doc, Order):
                writes.append(CreateOrder(doc))
            else:
                raise TypeError(f"Cannot seed {type(doc).__name__}")
        store.commit_batch(writes)

    return _seed
