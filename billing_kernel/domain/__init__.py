"""
Pure domain layer.

Immutable value objects and documents with NO dependencies on the ORM,
the database, or I/O. The clock is the one sanctioned time boundary and is
always injected.
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.documents import (
    BILLABLE_ORDER_STATUSES,
    EPOCH,
    Invoice,
    InvoiceStatus,
    LineItem,
    Order,
    OrderStatus,
    Payment,
    PaymentApplication,
    PaymentMethod,
)
from billing_kernel.domain.values import Money, to_cents

__all__ = [
    "BILLABLE_ORDER_STATUSES",
    "Clock",
    "DeterministicClock",
    "EPOCH",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "Money",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentApplication",
    "PaymentMethod",
    "SystemClock",
    "to_cents",
]
