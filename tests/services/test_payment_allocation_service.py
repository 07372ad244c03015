"""
Tests for PaymentAllocationService.

Covers:
- End-to-end allocation against the in-memory store
- Overpayment reported as unapplied credit (and logged)
- Optimistic retry on concurrent modification
- Conflict after retries or lock wait are exhausted
- All-or-nothing persistence on atomic and non-atomic stores
"""

import itertools
from dataclasses import replace
from datetime import date

import pytest

from billing_config.schema import AllocationSettings
from billing_engines.allocation import AllocationOrder
from billing_kernel.domain.documents import InvoiceStatus, PaymentMethod
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import (
    AllocationConflictError,
    AllocationPersistenceError,
    InvalidPaymentAmountError,
    InvoiceNotFoundError,
    NoOutstandingBalanceError,
    StaleDocumentError,
    StoreError,
    StoreTimeoutError,
)
from billing_services.locks import CustomerLockRegistry
from billing_services.payment_allocation import PaymentAllocationService
from billing_store import CreatePayment, InMemoryDocumentStore, UpdateInvoice

CUSTOMER = "cust-1"
PAY_DATE = date(2024, 3, 1)


def _ids():
    counter = itertools.count(1)
    return lambda: f"pay-{next(counter):04d}"


# ---------------------------------------------------------------------------
# Misbehaving stores
# ---------------------------------------------------------------------------


class RacingStore(InMemoryDocumentStore):
    """Another writer bumps an invoice right before the first ``races`` commits."""

    def __init__(self, races: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.races = races
        self.commit_calls = 0

    def commit_batch(self, writes, timeout=None):
        self.commit_calls += 1
        updates = [w for w in writes if isinstance(w, UpdateInvoice)]
        if self.races and updates:
            self.races -= 1
            current = self.get_invoice(updates[0].invoice.id)
            super().commit_batch(
                [UpdateInvoice(replace(current, version=current.version + 1), current.version)]
            )
        super().commit_batch(writes, timeout)


class FailingStore(InMemoryDocumentStore):
    """Raise ``error`` on any batch containing a write of ``fail_on`` type."""

    def __init__(self, error: Exception, fail_on=CreatePayment, fail_compensation=False, **kwargs):
        super().__init__(**kwargs)
        self.error = error
        self.fail_on = fail_on
        self.fail_compensation = fail_compensation
        self.armed = False

    def commit_batch(self, writes, timeout=None):
        if self.armed and any(isinstance(w, self.fail_on) for w in writes):
            # Once the payment write has failed, compensation writes fail too.
            if self.fail_compensation:
                self.fail_on = UpdateInvoice
            raise self.error
        super().commit_batch(writes, timeout)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def invoices(make_invoice):
    return [
        make_invoice("inv-a", amount="100.00", invoice_date=date(2024, 1, 1), due_date=date(2024, 1, 31)),
        make_invoice("inv-b", amount="60.00", invoice_date=date(2024, 1, 15), due_date=date(2024, 2, 14)),
    ]


@pytest.fixture
def service(memory_store, invoices, seed, clock):
    seed(memory_store, *invoices)
    return PaymentAllocationService(memory_store, clock=clock, id_factory=_ids())


def _service_for(store, invoices, seed, clock, **settings):
    seed(store, *invoices)
    store.armed = True
    return PaymentAllocationService(
        store, settings=AllocationSettings(**settings), clock=clock, id_factory=_ids()
    )


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


class TestAllocatePayment:
    def test_payment_split_oldest_first(self, service, memory_store):
        record = service.allocate_payment(
            customer_id=CUSTOMER,
            amount=Money.of("130.00"),
            method=PaymentMethod.CHECK,
            payment_date=PAY_DATE,
            notes="check #1042",
        )

        assert record.payment_id == "pay-0001"
        assert record.invoice_numbers == ("INV-inv-a", "INV-inv-b")
        assert [a.amount_applied for a in record.applications] == [Money.of("100.00"), Money.of("30.00")]
        assert record.total_applied == Money.of("130.00")
        assert not record.has_unapplied_credit
        assert record.attempts == 1

        inv_a = memory_store.get_invoice("inv-a")
        inv_b = memory_store.get_invoice("inv-b")
        assert inv_a.status is InvoiceStatus.PAID and inv_a.version == 2
        assert inv_b.balance_due == Money.of("30.00")
        assert inv_b.payments == ("pay-0001",)

        payment = memory_store.get_payment("pay-0001")
        assert payment.amount == Money.of("130.00")
        assert payment.notes == "check #1042"
        assert payment.method is PaymentMethod.CHECK
        assert payment.applied_to("inv-b") == Money.of("30.00")

    def test_small_payment(self, service, memory_store):
        service.allocate_payment(CUSTOMER, Money.of("40.00"), PaymentMethod.CASH, PAY_DATE)

        assert memory_store.get_invoice("inv-a").balance_due == Money.of("60.00")
        assert memory_store.get_invoice("inv-b").version == 1

    def test_accepts_decimal_string_and_method_value(self, service):
        record = service.allocate_payment(CUSTOMER, "12.50", "Bank Transfer", PAY_DATE)

        assert record.amount == Money.of("12.50")
        assert record.method is PaymentMethod.BANK_TRANSFER

    def test_payment_timestamp_from_clock(self, service, memory_store, clock):
        service.allocate_payment(CUSTOMER, Money.of("1.00"), PaymentMethod.CASH, PAY_DATE)

        assert memory_store.get_payment("pay-0001").created_at == clock.now()

    def test_selected_invoices_only(self, service, memory_store):
        record = service.allocate_payment(
            CUSTOMER, Money.of("50.00"), PaymentMethod.CASH, PAY_DATE, invoice_ids=["inv-b"]
        )

        assert record.invoice_numbers == ("INV-inv-b",)
        assert memory_store.get_invoice("inv-a").amount_paid.is_zero

    def test_selected_order_setting_without_selection_uses_oldest_due(
        self, memory_store, invoices, seed, clock
    ):
        seed(memory_store, *invoices)
        service = PaymentAllocationService(
            memory_store,
            settings=AllocationSettings(order=AllocationOrder.SELECTED_ORDER),
            clock=clock,
        )

        record = service.allocate_payment(CUSTOMER, Money.of("10.00"), PaymentMethod.CASH, PAY_DATE)

        assert record.applications[0].invoice_id == "inv-a"

    def test_preview_writes_nothing(self, service, memory_store):
        plan = service.preview_allocation(CUSTOMER, "130.00")

        assert plan.invoice_ids == ("inv-a", "inv-b")
        assert memory_store.get_invoice("inv-a").version == 1
        assert memory_store.get_payments_by_customer(CUSTOMER) == []

    def test_overpayment_is_credit_not_error(self, service, memory_store, captured_logs):
        record = service.allocate_payment(CUSTOMER, Money.of("200.00"), PaymentMethod.CASH, PAY_DATE)

        assert record.unapplied_amount == Money.of("40.00")
        assert record.has_unapplied_credit
        assert memory_store.get_payment("pay-0001").unapplied_amount == Money.of("40.00")

        warnings = [r for r in captured_logs() if r["message"] == "allocation_unapplied_credit"]
        assert len(warnings) == 1
        assert warnings[0]["level"] == "WARNING"
        assert warnings[0]["unapplied"] == "40.00"
        assert warnings[0]["customer_id"] == CUSTOMER
        assert warnings[0]["payment_id"] == "pay-0001"

    def test_lifecycle_logged(self, service, captured_logs):
        service.allocate_payment(CUSTOMER, Money.of("10.00"), PaymentMethod.CASH, PAY_DATE)

        messages = [r["message"] for r in captured_logs()]
        assert messages.index("allocation_started") < messages.index("allocation_committed")
        assert "BILLING_ENGINE_TRACE" in messages


class TestPreconditions:
    @pytest.mark.parametrize("amount", ["0", "-1.00"])
    def test_non_positive_amount(self, service, memory_store, amount):
        with pytest.raises(InvalidPaymentAmountError):
            service.allocate_payment(CUSTOMER, amount, PaymentMethod.CASH, PAY_DATE)

        assert memory_store.get_payments_by_customer(CUSTOMER) == []

    def test_nothing_outstanding(self, memory_store, clock):
        service = PaymentAllocationService(memory_store, clock=clock)

        with pytest.raises(NoOutstandingBalanceError):
            service.allocate_payment("nobody", Money.of("10.00"), PaymentMethod.CASH, PAY_DATE)

    def test_unknown_selected_invoice(self, service):
        with pytest.raises(InvoiceNotFoundError):
            service.allocate_payment(
                CUSTOMER, Money.of("10.00"), PaymentMethod.CASH, PAY_DATE, invoice_ids=["nope"]
            )

    def test_unknown_method(self, service):
        with pytest.raises(ValueError):
            service.allocate_payment(CUSTOMER, Money.of("10.00"), "Barter", PAY_DATE)


# ---------------------------------------------------------------------------
# Concurrency control
# ---------------------------------------------------------------------------


class TestOptimisticRetry:
    def test_retry_after_concurrent_update(self, invoices, seed, clock, captured_logs):
        store = RacingStore(races=1)
        service = _service_for(store, invoices, seed, clock)

        record = service.allocate_payment(CUSTOMER, Money.of("130.00"), PaymentMethod.CASH, PAY_DATE)

        assert record.attempts == 2
        assert store.get_invoice("inv-a").balance_due.is_zero
        # Seed v1, racing bump v2, allocation v3
        assert store.get_invoice("inv-a").version == 3
        assert any(r["message"] == "allocation_conflict_retry" for r in captured_logs())

    def test_conflict_after_max_attempts(self, invoices, seed, clock):
        store = RacingStore(races=10)
        service = _service_for(store, invoices, seed, clock, max_attempts=3)

        with pytest.raises(AllocationConflictError) as exc_info:
            service.allocate_payment(CUSTOMER, Money.of("130.00"), PaymentMethod.CASH, PAY_DATE)

        err = exc_info.value
        assert err.code == "ALLOCATION_CONFLICT"
        assert err.attempts == 3
        assert err.customer_id == CUSTOMER
        assert err.amount == "130.00"
        assert err.invoice_ids == ["inv-a", "inv-b"]
        assert store.get_payments_by_customer(CUSTOMER) == []
        assert store.get_invoice("inv-a").amount_paid.is_zero

    def test_lock_wait_timeout(self, memory_store, invoices, seed, clock):
        seed(memory_store, *invoices)
        locks = CustomerLockRegistry()
        service = PaymentAllocationService(
            memory_store,
            settings=AllocationSettings(lock_timeout_seconds=0.05),
            clock=clock,
            locks=locks,
        )

        with locks.hold(CUSTOMER, timeout=1.0) as held:
            assert held
            with pytest.raises(AllocationConflictError) as exc_info:
                service.allocate_payment(CUSTOMER, Money.of("10.00"), PaymentMethod.CASH, PAY_DATE)

        assert exc_info.value.attempts == 0
        assert memory_store.get_invoice("inv-a").version == 1


# ---------------------------------------------------------------------------
# Persistence failures
# ---------------------------------------------------------------------------


class TestAtomicPersistence:
    def test_store_timeout_leaves_nothing_behind(self, invoices, seed, clock):
        store = FailingStore(StoreTimeoutError("commit_batch", 30.0))
        service = _service_for(store, invoices, seed, clock)

        with pytest.raises(AllocationPersistenceError) as exc_info:
            service.allocate_payment(CUSTOMER, Money.of("130.00"), PaymentMethod.CASH, PAY_DATE)

        err = exc_info.value
        assert err.code == "ALLOCATION_PERSISTENCE_FAILED"
        assert err.rollback_succeeded
        assert err.invoice_ids == ["inv-a", "inv-b"]
        assert isinstance(err.__cause__, StoreTimeoutError)
        assert store.get_invoice("inv-a").version == 1
        assert store.get_payments_by_customer(CUSTOMER) == []

    def test_read_failure_wrapped(self, invoices, seed, clock):
        class BrokenReads(InMemoryDocumentStore):
            def get_invoices_by_customer(self, customer_id, timeout=None):
                raise StoreTimeoutError("get_invoices_by_customer", timeout)

        service = PaymentAllocationService(BrokenReads(), clock=clock)

        with pytest.raises(AllocationPersistenceError) as exc_info:
            service.allocate_payment(CUSTOMER, Money.of("1.00"), PaymentMethod.CASH, PAY_DATE)

        assert exc_info.value.customer_id == CUSTOMER


class TestNonAtomicCompensation:
    def test_payment_write_failure_restores_invoices(self, invoices, seed, clock, captured_logs):
        store = FailingStore(StoreError("disk full"), atomic_batches=False)
        service = _service_for(store, invoices, seed, clock)

        with pytest.raises(AllocationPersistenceError) as exc_info:
            service.allocate_payment(CUSTOMER, Money.of("130.00"), PaymentMethod.CASH, PAY_DATE)

        assert exc_info.value.rollback_succeeded
        for invoice_id in ("inv-a", "inv-b"):
            restored = store.get_invoice(invoice_id)
            assert restored.amount_paid.is_zero
            assert restored.status is InvoiceStatus.SENT
            assert restored.payments == ()
        assert store.get_payments_by_customer(CUSTOMER) == []
        assert any(r["message"] == "allocation_rolled_back" for r in captured_logs())

    def test_stale_midway_compensates_then_retries(self, invoices, seed, clock):
        """The second invoice update loses a race; the first is undone and the retry succeeds."""

        class StaleOnSecond(InMemoryDocumentStore):
            def __init__(self):
                super().__init__(atomic_batches=False)
                self.tripped = False

            def commit_batch(self, writes, timeout=None):
                write = writes[0]
                if (
                    not self.tripped
                    and len(writes) == 1
                    and isinstance(write, UpdateInvoice)
                    and write.invoice.id == "inv-b"
                ):
                    self.tripped = True
                    raise StaleDocumentError("inv-b", write.expected_version, write.expected_version + 1)
                super().commit_batch(writes, timeout)

        store = StaleOnSecond()
        seed(store, *invoices)
        service = PaymentAllocationService(store, clock=clock, id_factory=_ids())

        record = service.allocate_payment(CUSTOMER, Money.of("130.00"), PaymentMethod.CASH, PAY_DATE)

        assert record.attempts == 2
        inv_a = store.get_invoice("inv-a")
        assert inv_a.balance_due.is_zero
        assert inv_a.payments == ("pay-0001",)
        assert store.get_invoice("inv-b").balance_due == Money.of("30.00")

    def test_failed_compensation_reported(self, invoices, seed, clock, captured_logs):
        store = FailingStore(StoreError("connection lost"), atomic_batches=False, fail_compensation=True)
        service = _service_for(store, invoices, seed, clock)

        with pytest.raises(AllocationPersistenceError) as exc_info:
            service.allocate_payment(CUSTOMER, Money.of("130.00"), PaymentMethod.CASH, PAY_DATE)

        assert exc_info.value.rollback_succeeded is False
        critical = [r for r in captured_logs() if r["message"] == "allocation_rollback_failed"]
        assert critical and critical[0]["level"] == "CRITICAL"
