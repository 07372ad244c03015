"""
In-memory document store.

Contract:
    Thread-safe implementation of ``DocumentStore`` backed by dicts of
    frozen documents. One re-entrant lock guards every call; a call that
    cannot take the lock within its timeout raises ``StoreTimeoutError``.

    With ``atomic_batches=True`` (default) a batch is staged on copies and
    swapped in only when every write succeeded. With ``atomic_batches=False``
    writes land one at a time, which is how a document database without
    multi-document transactions behaves.

Architecture: billing_store. Used by tests and single-process tools.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date

from billing_kernel.domain.documents import Invoice, Order, Payment
from billing_kernel.exceptions import StaleDocumentError, StoreError, StoreTimeoutError
from billing_kernel.logging_config import get_logger
from billing_store.interface import (
    CreateInvoice,
    CreateOrder,
    CreatePayment,
    DocumentWrite,
    UpdateInvoice,
)

logger = get_logger("store.memory")


class _Tables:
    """The three document maps, copied together when a batch is staged."""

    def __init__(
        self,
        invoices: dict[str, Invoice] | None = None,
        payments: dict[str, Payment] | None = None,
        orders: dict[str, Order] | None = None,
    ):
        self.invoices = invoices if invoices is not None else {}
        self.payments = payments if payments is not None else {}
        self.orders = orders if orders is not None else {}

    def copy(self) -> _Tables:
        return _Tables(dict(self.invoices), dict(self.payments), dict(self.orders))


class InMemoryDocumentStore:
    """Versioned, thread-safe document store held in process memory."""

    def __init__(self, atomic_batches: bool = True, default_timeout: float | None = None):
        self.atomic_batches = atomic_batches
        self._default_timeout = default_timeout
        self._lock = threading.RLock()
        self._tables = _Tables()

    @contextmanager
    def _locked(self, operation: str, timeout: float | None) -> Iterator[None]:
        limit = timeout if timeout is not None else self._default_timeout
        acquired = self._lock.acquire(timeout=-1 if limit is None else limit)
        if not acquired:
            logger.warning("store_timeout", extra={"operation": operation, "timeout": limit})
            raise StoreTimeoutError(operation, limit)
        try:
            yield
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: str, timeout: float | None = None) -> Invoice | None:
        with self._locked("get_invoice", timeout):
            return self._tables.invoices.get(invoice_id)

    def get_payment(self, payment_id: str, timeout: float | None = None) -> Payment | None:
        with self._locked("get_payment", timeout):
            return self._tables.payments.get(payment_id)

    def get_invoices_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Invoice]:
        with self._locked("get_invoices_by_customer", timeout):
            found = [i for i in self._tables.invoices.values() if i.customer_id == customer_id]
        return sorted(found, key=lambda i: (i.invoice_date, i.invoice_number, i.id))

    def get_payments_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Payment]:
        with self._locked("get_payments_by_customer", timeout):
            found = [p for p in self._tables.payments.values() if p.customer_id == customer_id]
        return sorted(found, key=lambda p: (p.payment_date, p.created_at, p.id))

    def get_orders_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Order]:
        with self._locked("get_orders_by_customer", timeout):
            found = [o for o in self._tables.orders.values() if o.customer_id == customer_id]
        return sorted(found, key=lambda o: (o.order_date, o.id))

    def get_outstanding_invoices(self, timeout: float | None = None) -> list[Invoice]:
        with self._locked("get_outstanding_invoices", timeout):
            found = [i for i in self._tables.invoices.values() if i.is_open]
        return sorted(found, key=lambda i: (i.customer_id, i.invoice_date, i.id))

    def get_payments_between(
        self, start_date: date, end_date: date, timeout: float | None = None
    ) -> list[Payment]:
        with self._locked("get_payments_between", timeout):
            found = [
                p for p in self._tables.payments.values()
                if start_date <= p.payment_date <= end_date
            ]
        return sorted(found, key=lambda p: (p.payment_date, p.created_at, p.id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def commit_batch(self, writes: Sequence[DocumentWrite], timeout: float | None = None) -> None:
        """Apply ``writes`` in order (all-or-nothing when atomic)."""
        with self._locked("commit_batch", timeout):
            if self.atomic_batches:
                staged = self._tables.copy()
                for write in writes:
                    self._apply(staged, write)
                self._tables = staged
            else:
                for write in writes:
                    self._apply(self._tables, write)

        logger.debug("store_batch_committed", extra={
            "write_count": len(writes),
            "atomic": self.atomic_batches,
        })

    def _apply(self, tables: _Tables, write: DocumentWrite) -> None:
        match write:
            case CreateInvoice(invoice=invoice):
                if invoice.id in tables.invoices:
                    raise StoreError(f"Invoice {invoice.id} already exists")
                tables.invoices[invoice.id] = invoice
            case UpdateInvoice(invoice=invoice, expected_version=expected):
                current = tables.invoices.get(invoice.id)
                actual = current.version if current is not None else None
                if actual != expected:
                    logger.info("store_stale_document", extra={
                        "document_id": invoice.id,
                        "expected_version": expected,
                        "actual_version": actual,
                    })
                    raise StaleDocumentError(invoice.id, expected, actual)
                tables.invoices[invoice.id] = invoice
            case CreatePayment(payment=payment):
                if payment.id in tables.payments:
                    raise StoreError(f"Payment {payment.id} already exists")
                tables.payments[payment.id] = payment
            case CreateOrder(order=order):
                if order.id in tables.orders:
                    raise StoreError(f"Order {order.id} already exists")
                tables.orders[order.id] = order
            case _:
                raise StoreError(f"Unsupported write: {type(write).__name__}")
