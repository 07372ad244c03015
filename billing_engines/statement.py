"""
Module: billing_engines.statement
Responsibility:
    Reconstruct a customer statement -- opening balance, chronological
    charge/payment lines with a running balance, closing balance -- from
    the customer's invoices, payments and (optionally) orders.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Running balance: balance[i] == balance[i-1] + debit[i] - credit[i],
      starting from the opening balance.
    - Opening balance: net of every transaction dated strictly before the
      statement start date.
    - Determinism: lines are sorted by (date, document creation time,
      position in document, document id), so input order never changes
      the output.
    - Read-only: building a statement never mutates its inputs.

Failure modes:
    - InvalidDateRangeError when start_date > end_date.
    - ValueError when a transaction carries both a debit and a credit.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from billing_engines.tracer import traced_engine
from billing_kernel.domain.documents import EPOCH, Invoice, InvoiceStatus, Order, Payment
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import InvalidDateRangeError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.statement")


class TransactionType(str, Enum):
    """Kind of statement line."""

    INVOICE = "Invoice"
    PAYMENT = "Payment"
    ORDER = "Order"
    UNAPPLIED_CREDIT = "Unapplied Credit"


@dataclass(frozen=True)
class StatementTransaction:
    """
    A dated debit or credit against the customer's balance.

    Guarantees:
        - Exactly one side is non-zero; neither side is negative.
    """

    transaction_date: date
    transaction_type: TransactionType
    document_id: str
    document_number: str
    debit: Money = Money(0)
    credit: Money = Money(0)
    created_at: datetime = EPOCH
    position: int = 0

    def __post_init__(self) -> None:
        if self.debit.is_negative or self.credit.is_negative:
            raise ValueError(f"Negative amount on statement transaction {self.document_id}")
        if not self.debit.is_zero and not self.credit.is_zero:
            raise ValueError(
                f"Statement transaction {self.document_id} has both a debit and a credit"
            )

    @property
    def net(self) -> Money:
        return self.debit - self.credit

    @property
    def sort_key(self) -> tuple:
        return (self.transaction_date, self.created_at, self.position, self.document_id)


@dataclass(frozen=True)
class StatementLine:
    """One printed statement row with its post-transaction balance."""

    line_date: date
    transaction_type: TransactionType
    document_number: str
    document_id: str
    debit: Money
    credit: Money
    balance: Money


@dataclass(frozen=True)
class Statement:
    """
    A point-in-time customer statement.

    Guarantees:
        - closing_balance == opening_balance + total_debits - total_credits.
    """

    customer_id: str
    start_date: date
    end_date: date
    opening_balance: Money
    lines: tuple[StatementLine, ...]
    closing_balance: Money

    @property
    def total_debits(self) -> Money:
        return sum((line.debit for line in self.lines), Money(0))

    @property
    def total_credits(self) -> Money:
        return sum((line.credit for line in self.lines), Money(0))

    @property
    def is_empty(self) -> bool:
        return not self.lines


# ---------------------------------------------------------------------------
# Document -> transaction conversion
# ---------------------------------------------------------------------------


def invoice_transactions(invoice: Invoice) -> list[StatementTransaction]:
    """The issuance charge of an invoice; voided invoices charge nothing."""
    if invoice.status is InvoiceStatus.VOIDED or invoice.total.is_zero:
        return []
    return [
        StatementTransaction(
            transaction_date=invoice.invoice_date,
            transaction_type=TransactionType.INVOICE,
            document_id=invoice.id,
            document_number=invoice.invoice_number,
            debit=invoice.total,
            created_at=invoice.created_at,
        )
    ]


def payment_transactions(payment: Payment) -> list[StatementTransaction]:
    """
    One credit per invoice the payment touched, plus the unapplied credit.

    Lines keep the order in which the payment was allocated.
    """
    txns = [
        StatementTransaction(
            transaction_date=payment.payment_date,
            transaction_type=TransactionType.PAYMENT,
            document_id=payment.id,
            document_number=app.invoice_number,
            credit=app.amount_applied,
            created_at=payment.created_at,
            position=i,
        )
        for i, app in enumerate(payment.applications)
    ]
    if payment.unapplied_amount.is_positive:
        txns.append(
            StatementTransaction(
                transaction_date=payment.payment_date,
                transaction_type=TransactionType.UNAPPLIED_CREDIT,
                document_id=payment.id,
                document_number=payment.id[:8],
                credit=payment.unapplied_amount,
                created_at=payment.created_at,
                position=len(payment.applications),
            )
        )
    return txns


def order_transactions(order: Order) -> list[StatementTransaction]:
    """A billable order's charge; orders already invoiced charge nothing."""
    if not order.is_billable or order.total.is_zero:
        return []
    return [
        StatementTransaction(
            transaction_date=order.order_date,
            transaction_type=TransactionType.ORDER,
            document_id=order.id,
            document_number=order.order_number,
            debit=order.total,
            created_at=order.created_at,
        )
    ]


def collect_transactions(
    invoices: Iterable[Invoice] = (),
    payments: Iterable[Payment] = (),
    orders: Iterable[Order] = (),
) -> list[StatementTransaction]:
    """Flatten documents into statement transactions (unsorted)."""
    txns: list[StatementTransaction] = []
    for invoice in invoices:
        txns.extend(invoice_transactions(invoice))
    for payment in payments:
        txns.extend(payment_transactions(payment))
    for order in orders:
        txns.extend(order_transactions(order))
    return txns


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class StatementEngine:
    """
    Fold transactions into a statement.

    Contract:
        Pure function of its inputs. Identical inputs yield identical
        statements regardless of transaction order.
    """

    @traced_engine("statement", "1.0", fingerprint_fields=("customer_id", "start_date", "end_date"))
    def build(
        self,
        customer_id: str,
        start_date: date,
        end_date: date,
        transactions: Sequence[StatementTransaction],
    ) -> Statement:
        """
        Build the statement for ``[start_date, end_date]`` (inclusive).

        Raises:
            InvalidDateRangeError: if start_date > end_date.
        """
        if start_date > end_date:
            raise InvalidDateRangeError(start_date, end_date)

        opening = sum(
            (t.net for t in transactions if t.transaction_date < start_date),
            Money(0),
        )
        in_range = sorted(
            (t for t in transactions if start_date <= t.transaction_date <= end_date),
            key=lambda t: t.sort_key,
        )

        balance = opening
        lines: list[StatementLine] = []
        for txn in in_range:
            balance = balance + txn.debit - txn.credit
            lines.append(
                StatementLine(
                    line_date=txn.transaction_date,
                    transaction_type=txn.transaction_type,
                    document_number=txn.document_number,
                    document_id=txn.document_id,
                    debit=txn.debit,
                    credit=txn.credit,
                    balance=balance,
                )
            )

        statement = Statement(
            customer_id=customer_id,
            start_date=start_date,
            end_date=end_date,
            opening_balance=opening,
            lines=tuple(lines),
            closing_balance=balance,
        )

        logger.info("statement_built", extra={
            "customer_id": customer_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "opening_balance": str(opening),
            "closing_balance": str(balance),
            "line_count": len(lines),
        })

        return statement
