"""
Typed exception hierarchy for the billing kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the data a caller needs to display or log the failure.

    BillingError (base)
    |
    +-- DocumentError
    |   +-- InvoiceInvariantError
    |   +-- PaymentInvariantError
    |   +-- InvoiceNotFoundError
    |
    +-- AllocationError
    |   +-- InvalidPaymentAmountError
    |   +-- NoOutstandingBalanceError
    |   +-- AllocationConflictError
    |   +-- AllocationPersistenceError
    |
    +-- StatementError
    |   +-- InvalidDateRangeError
    |
    +-- StoreError
        +-- StaleDocumentError
        +-- StoreTimeoutError

Category        | Code                          | When Raised
----------------|-------------------------------|----------------------------------------
Document        | INVOICE_INVARIANT             | total/paid/balance fields inconsistent
                | PAYMENT_INVARIANT             | applications + unapplied != amount
                | INVOICE_NOT_FOUND             | selected invoice not owned by customer
----------------|-------------------------------|----------------------------------------
Allocation      | INVALID_PAYMENT_AMOUNT        | payment amount <= 0
                | NO_OUTSTANDING_BALANCE        | nothing open to allocate against
                | ALLOCATION_CONFLICT           | concurrent modification, retries spent
                | ALLOCATION_PERSISTENCE_FAILED | commit failed, changes rolled back
----------------|-------------------------------|----------------------------------------
Statement       | INVALID_DATE_RANGE            | start_date after end_date
----------------|-------------------------------|----------------------------------------
Store           | STORE_ERROR                   | any other persistence failure
                | STALE_DOCUMENT                | version mismatch on conditional write
                | STORE_TIMEOUT                 | store call exceeded its timeout

Handling categories differently:
    - StaleDocumentError -> retry from a fresh read (AllocationConflictError
      once the retries are spent)
    - NoOutstandingBalanceError, InvalidDateRangeError -> user input, no retry
    - AllocationPersistenceError -> surface to the user; nothing was applied

Overpayment is NOT an exception; it is the ``unapplied_amount`` of the
allocation record.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence


class BillingError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "BILLING_ERROR"


# Document-related exceptions


class DocumentError(BillingError):
    """Base exception for document integrity errors."""

    code: str = "DOCUMENT_ERROR"


class InvoiceInvariantError(DocumentError):
    """Invoice amount fields are inconsistent with each other."""

    code: str = "INVOICE_INVARIANT"

    def __init__(self, invoice_id: str, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Invoice {invoice_id} violates invariant: {reason}")


class PaymentInvariantError(DocumentError):
    """Payment applications do not reconcile to the payment amount."""

    code: str = "PAYMENT_INVARIANT"

    def __init__(self, payment_id: str, reason: str):
        self.payment_id = payment_id
        self.reason = reason
        super().__init__(f"Payment {payment_id} violates invariant: {reason}")


class InvoiceNotFoundError(DocumentError):
    """One or more requested invoices do not belong to the customer."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, customer_id: str, invoice_ids: Sequence[str]):
        self.customer_id = customer_id
        self.invoice_ids = list(invoice_ids)
        super().__init__(
            f"Invoices not found for customer {customer_id}: "
            f"{', '.join(self.invoice_ids)}"
        )


# Allocation-related exceptions


class AllocationError(BillingError):
    """Base exception for payment allocation errors."""

    code: str = "ALLOCATION_ERROR"


class InvalidPaymentAmountError(AllocationError):
    """Payment amount must be strictly positive."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, amount: Decimal, customer_id: str | None = None):
        self.amount = str(amount)
        self.customer_id = customer_id
        super().__init__(f"Payment amount must be greater than zero, got {amount}")


class NoOutstandingBalanceError(AllocationError):
    """The customer has no open invoice to apply a payment to."""

    code: str = "NO_OUTSTANDING_BALANCE"

    def __init__(self, customer_id: str, amount: Decimal):
        self.customer_id = customer_id
        self.amount = str(amount)
        super().__init__(
            f"Customer {customer_id} has no outstanding invoices "
            f"to apply a payment of {amount} to"
        )


class AllocationConflictError(AllocationError):
    """
    Concurrent modification kept invalidating the allocation.

    Raised after the bounded optimistic retry loop is exhausted, or when the
    per-customer allocation lock could not be obtained in time.
    """

    code: str = "ALLOCATION_CONFLICT"

    def __init__(
        self,
        customer_id: str,
        amount: Decimal,
        attempts: int,
        invoice_ids: Sequence[str] = (),
    ):
        self.customer_id = customer_id
        self.amount = str(amount)
        self.attempts = attempts
        self.invoice_ids = list(invoice_ids)
        super().__init__(
            f"Allocation of {amount} for customer {customer_id} conflicted "
            f"with a concurrent update after {attempts} attempt(s)"
        )


class AllocationPersistenceError(AllocationError):
    """
    Writing the allocation failed; no partial effect remains.

    ``rollback_succeeded`` is False only when a compensating write on a
    non-atomic store itself failed. That case is logged at CRITICAL.
    """

    code: str = "ALLOCATION_PERSISTENCE_FAILED"

    def __init__(
        self,
        customer_id: str,
        amount: Decimal,
        invoice_ids: Sequence[str],
        reason: str,
        rollback_succeeded: bool = True,
    ):
        self.customer_id = customer_id
        self.amount = str(amount)
        self.invoice_ids = list(invoice_ids)
        self.reason = reason
        self.rollback_succeeded = rollback_succeeded
        super().__init__(
            f"Could not persist allocation of {amount} for customer "
            f"{customer_id}: {reason}"
        )


# Statement-related exceptions


class StatementError(BillingError):
    """Base exception for statement errors."""

    code: str = "STATEMENT_ERROR"


class InvalidDateRangeError(StatementError):
    """Statement start date falls after its end date."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start_date, end_date):
        self.start_date = start_date.isoformat()
        self.end_date = end_date.isoformat()
        super().__init__(
            f"Invalid statement range: {self.start_date} is after {self.end_date}"
        )


# Store-related exceptions


class StoreError(BillingError):
    """Document store failure."""

    code: str = "STORE_ERROR"


class StaleDocumentError(StoreError):
    """A conditional write found a different version than expected."""

    code: str = "STALE_DOCUMENT"

    def __init__(self, document_id: str, expected_version: int, actual_version: int | None):
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Document {document_id} changed concurrently: expected version "
            f"{expected_version}, found {actual_version}"
        )


class StoreTimeoutError(StoreError):
    """A store call did not complete within its timeout."""

    code: str = "STORE_TIMEOUT"

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Store operation {operation} timed out after {timeout}s")
