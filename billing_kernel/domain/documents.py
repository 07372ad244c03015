"""
Billing documents (``billing_kernel.domain.documents``).

Responsibility
--------------
Frozen dataclass value objects for the documents the billing core reads and
writes: invoices (with line items), payments (with their per-invoice
applications) and orders.

Architecture position
---------------------
**Kernel > Domain** -- pure data definitions with ZERO I/O. Produced by the
document stores, transformed by the engines, persisted again by services.

Invariants enforced
-------------------
* All documents are ``frozen=True``; changes produce new instances.
* All monetary fields are ``Money`` (integer cents).
* Invoice: ``total == subtotal + tax_amount``, ``0 <= amount_paid <= total``,
  ``balance_due == total - amount_paid``; a voided invoice carries no
  payments.
* Payment: ``amount > 0``, every application is positive and
  ``sum(applied) + unapplied_amount == amount``.

Failure modes
-------------
* ``InvoiceInvariantError`` / ``PaymentInvariantError`` on construction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from billing_kernel.domain.values import Money
from billing_kernel.exceptions import InvoiceInvariantError, PaymentInvariantError
from billing_kernel.logging_config import get_logger

logger = get_logger("domain.documents")

# Creation timestamp for documents that predate timestamping.
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""

    DRAFT = "Draft"
    SENT = "Sent"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    VOIDED = "Voided"


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    DRAFT = "Draft"
    ORDERED = "Ordered"
    READY_FOR_PICKUP = "Ready for pick up"
    PICKED_UP = "Picked up"
    INVOICED = "Invoiced"
    VOIDED = "Voided"


# Orders that stand as a charge on their own (not yet rolled into an invoice).
BILLABLE_ORDER_STATUSES = frozenset({
    OrderStatus.ORDERED,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.PICKED_UP,
})


class PaymentMethod(str, Enum):
    """How a payment was tendered."""

    CASH = "Cash"
    CHECK = "Check"
    CARD = "Credit Card"
    BANK_TRANSFER = "Bank Transfer"
    OTHER = "Other"


@dataclass(frozen=True)
class LineItem:
    """A single product line on an invoice."""

    description: str
    quantity: Decimal
    unit_price: Money
    total: Money
    product_id: str | None = None


@dataclass(frozen=True)
class Invoice:
    """A customer invoice and its running payment state."""

    id: str
    customer_id: str
    invoice_number: str
    invoice_date: date
    subtotal: Money
    tax_amount: Money
    total: Money
    amount_paid: Money
    balance_due: Money
    due_date: date | None = None
    status: InvoiceStatus = InvoiceStatus.SENT
    line_items: tuple[LineItem, ...] = ()
    payments: tuple[str, ...] = ()
    created_at: datetime = EPOCH
    version: int = 1

    def __post_init__(self) -> None:
        if self.subtotal + self.tax_amount != self.total:
            raise InvoiceInvariantError(
                self.id,
                f"total {self.total} != subtotal {self.subtotal} + tax {self.tax_amount}",
            )
        if self.amount_paid.is_negative:
            raise InvoiceInvariantError(self.id, f"amount_paid {self.amount_paid} is negative")
        if self.amount_paid > self.total:
            raise InvoiceInvariantError(
                self.id, f"amount_paid {self.amount_paid} exceeds total {self.total}"
            )
        if self.balance_due != self.total - self.amount_paid:
            raise InvoiceInvariantError(
                self.id,
                f"balance_due {self.balance_due} != total {self.total} - paid {self.amount_paid}",
            )
        if self.status is InvoiceStatus.VOIDED and not self.amount_paid.is_zero:
            raise InvoiceInvariantError(self.id, "an invoice with payments cannot be voided")

    @classmethod
    def issue(
        cls,
        id: str,
        customer_id: str,
        invoice_number: str,
        invoice_date: date,
        subtotal: Money,
        tax_amount: Money = Money(0),
        due_date: date | None = None,
        line_items: tuple[LineItem, ...] = (),
        status: InvoiceStatus = InvoiceStatus.SENT,
        created_at: datetime = EPOCH,
    ) -> Invoice:
        """Create a freshly issued invoice with nothing paid yet."""
        total = subtotal + tax_amount
        return cls(
            id=id,
            customer_id=customer_id,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total=total,
            amount_paid=Money(0),
            balance_due=total,
            due_date=due_date,
            status=status,
            line_items=line_items,
            created_at=created_at,
        )

    @property
    def is_open(self) -> bool:
        """True if the invoice can still receive a payment."""
        return self.balance_due.is_positive and self.status is not InvoiceStatus.VOIDED

    @property
    def effective_due_date(self) -> date:
        """Due date, falling back to the invoice date when none was set."""
        return self.due_date or self.invoice_date

    def apply_payment(self, payment_id: str, amount: Money) -> Invoice:
        """
        Return a copy with ``amount`` applied from ``payment_id``.

        The copy carries the next version number, the payment reference
        appended, and a status reflecting the new balance.
        """
        amount_paid = self.amount_paid + amount
        balance_due = self.total - amount_paid
        return replace(
            self,
            amount_paid=amount_paid,
            balance_due=balance_due,
            payments=self.payments + (payment_id,),
            status=InvoiceStatus.PAID if balance_due.is_zero else InvoiceStatus.PARTIALLY_PAID,
            version=self.version + 1,
        )


@dataclass(frozen=True)
class PaymentApplication:
    """The part of a payment applied to one invoice."""

    invoice_id: str
    invoice_number: str
    amount_applied: Money


@dataclass(frozen=True)
class Payment:
    """A payment received from a customer and how it was split."""

    id: str
    customer_id: str
    payment_date: date
    amount: Money
    method: PaymentMethod
    applications: tuple[PaymentApplication, ...] = ()
    unapplied_amount: Money = Money(0)
    notes: str | None = None
    created_at: datetime = EPOCH

    def __post_init__(self) -> None:
        if not self.amount.is_positive:
            logger.warning(
                "payment_invalid_amount",
                extra={"payment_id": self.id, "amount": str(self.amount)},
            )
            raise PaymentInvariantError(self.id, f"amount {self.amount} must be positive")
        if self.unapplied_amount.is_negative:
            raise PaymentInvariantError(self.id, "unapplied_amount cannot be negative")
        for app in self.applications:
            if not app.amount_applied.is_positive:
                raise PaymentInvariantError(
                    self.id,
                    f"application to {app.invoice_number} must be positive, "
                    f"got {app.amount_applied}",
                )
        applied = sum((a.amount_applied for a in self.applications), Money(0))
        if applied + self.unapplied_amount != self.amount:
            raise PaymentInvariantError(
                self.id,
                f"applied {applied} + unapplied {self.unapplied_amount} != amount {self.amount}",
            )

    @property
    def total_applied(self) -> Money:
        return sum((a.amount_applied for a in self.applications), Money(0))

    def applied_to(self, invoice_id: str) -> Money:
        """Total this payment applied to one invoice."""
        return sum(
            (a.amount_applied for a in self.applications if a.invoice_id == invoice_id),
            Money(0),
        )


@dataclass(frozen=True)
class Order:
    """A customer order; a charge on statements only while billable."""

    id: str
    customer_id: str
    order_number: str
    order_date: date
    total: Money
    status: OrderStatus = OrderStatus.ORDERED
    created_at: datetime = EPOCH

    @property
    def is_billable(self) -> bool:
        return self.status in BILLABLE_ORDER_STATUSES
