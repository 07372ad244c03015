"""
Document store protocol and batch write DTOs.

Contract:
    Reads return frozen documents (``billing_kernel.domain.documents``).
    ``commit_batch`` applies a sequence of writes. When ``atomic_batches``
    is true the batch is all-or-nothing; otherwise each write lands on its
    own and the caller is responsible for compensation.

    Every call accepts ``timeout`` (seconds, ``None`` = store default) and
    raises ``StoreTimeoutError`` when it is exceeded.

Failure modes:
    - StaleDocumentError: an ``UpdateInvoice`` found a version other than
      ``expected_version``.
    - StoreTimeoutError: the call did not complete in time.
    - StoreError: any other persistence failure, including creating a
      document whose id already exists.

Architecture: billing_store. Imports the kernel only.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Protocol, runtime_checkable

from billing_kernel.domain.documents import Invoice, Order, Payment


@dataclass(frozen=True)
class CreateInvoice:
    invoice: Invoice


@dataclass(frozen=True)
class UpdateInvoice:
    """Replace an invoice if its stored version still equals ``expected_version``."""

    invoice: Invoice
    expected_version: int


@dataclass(frozen=True)
class CreatePayment:
    payment: Payment


@dataclass(frozen=True)
class CreateOrder:
    order: Order


DocumentWrite = CreateInvoice | UpdateInvoice | CreatePayment | CreateOrder


@runtime_checkable
class DocumentStore(Protocol):
    """Read and write access to invoices, payments and orders."""

    atomic_batches: bool

    def get_invoice(self, invoice_id: str, timeout: float | None = None) -> Invoice | None:
        ...

    def get_payment(self, payment_id: str, timeout: float | None = None) -> Payment | None:
        ...

    def get_invoices_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Invoice]:
        """Every invoice of the customer, any status."""
        ...

    def get_payments_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Payment]:
        ...

    def get_orders_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Order]:
        ...

    def get_outstanding_invoices(self, timeout: float | None = None) -> list[Invoice]:
        """Open invoices (balance due > 0, not voided) across all customers."""
        ...

    def get_payments_between(
        self, start_date: date, end_date: date, timeout: float | None = None
    ) -> list[Payment]:
        """Payments dated within ``[start_date, end_date]``."""
        ...

    def commit_batch(
        self, writes: Sequence[DocumentWrite], timeout: float | None = None
    ) -> None:
        ...
