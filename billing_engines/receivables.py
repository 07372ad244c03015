"""
Module: billing_engines.receivables
Responsibility:
    Summaries over the receivables book: open invoices grouped per
    customer, outstanding balance per customer, and payment totals per
    tender method over a date range.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Grand totals equal the sum of their groups.
    - Only open invoices (balance due > 0, not voided) count as outstanding.
    - Deterministic ordering of every group and row.

Failure modes:
    - InvalidDateRangeError when a payments range has start after end.

Usage:
    from billing_engines.receivables import ReceivablesCalculator

    calc = ReceivablesCalculator()
    report = calc.outstanding_report(invoices=all_open_invoices)
    report.grand_total  # Money
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from billing_engines.tracer import traced_engine
from billing_kernel.domain.documents import Invoice, Payment, PaymentMethod
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import InvalidDateRangeError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.receivables")


@dataclass(frozen=True)
class CustomerOutstanding:
    """Open invoices of one customer, oldest due first."""

    customer_id: str
    invoices: tuple[Invoice, ...]

    @property
    def total(self) -> Money:
        return sum((inv.balance_due for inv in self.invoices), Money(0))

    @property
    def invoice_count(self) -> int:
        return len(self.invoices)


@dataclass(frozen=True)
class OutstandingReport:
    """
    Outstanding invoices across all customers.

    Guarantees:
        - ``grand_total`` equals the sum of every group total.
    """

    groups: tuple[CustomerOutstanding, ...]

    @property
    def grand_total(self) -> Money:
        return sum((g.total for g in self.groups), Money(0))

    @property
    def invoice_count(self) -> int:
        return sum(g.invoice_count for g in self.groups)


@dataclass(frozen=True)
class CustomerBalance:
    customer_id: str
    balance: Money
    invoice_count: int


@dataclass(frozen=True)
class MethodTotal:
    method: PaymentMethod
    payment_count: int
    total: Money


@dataclass(frozen=True)
class PaymentsByMethodReport:
    """Payment totals per method for ``[start_date, end_date]``."""

    start_date: date
    end_date: date
    rows: tuple[MethodTotal, ...]

    @property
    def total(self) -> Money:
        return sum((r.total for r in self.rows), Money(0))

    @property
    def payment_count(self) -> int:
        return sum(r.payment_count for r in self.rows)

    def for_method(self, method: PaymentMethod) -> MethodTotal | None:
        for row in self.rows:
            if row.method is method:
                return row
        return None


def _group_open_invoices(invoices: Sequence[Invoice]) -> dict[str, list[Invoice]]:
    grouped: dict[str, list[Invoice]] = defaultdict(list)
    for inv in invoices:
        if inv.is_open:
            grouped[inv.customer_id].append(inv)
    return grouped


class ReceivablesCalculator:
    """
    Receivables summaries.

    Contract:
        Pure functions of their inputs. No I/O, no clock.
    """

    @traced_engine("receivables_outstanding", "1.0")
    def outstanding_report(self, invoices: Sequence[Invoice]) -> OutstandingReport:
        """Open invoices grouped per customer (customers sorted by id)."""
        grouped = _group_open_invoices(invoices)
        groups = tuple(
            CustomerOutstanding(
                customer_id=customer_id,
                invoices=tuple(sorted(
                    grouped[customer_id],
                    key=lambda inv: (inv.effective_due_date, inv.invoice_number, inv.id),
                )),
            )
            for customer_id in sorted(grouped)
        )
        report = OutstandingReport(groups=groups)

        logger.info("receivables_outstanding_report", extra={
            "customer_count": len(groups),
            "invoice_count": report.invoice_count,
            "grand_total": str(report.grand_total),
        })
        return report

    @traced_engine("receivables_balances", "1.0")
    def customer_balances(self, invoices: Sequence[Invoice]) -> list[CustomerBalance]:
        """
        Outstanding balance per customer, largest balance first.

        Only open invoice balances count. Unapplied payment credit is not
        netted off, so a customer holding credit shows more here than the
        closing balance of their statement.
        """
        grouped = _group_open_invoices(invoices)
        balances = [
            CustomerBalance(
                customer_id=customer_id,
                balance=sum((inv.balance_due for inv in invs), Money(0)),
                invoice_count=len(invs),
            )
            for customer_id, invs in grouped.items()
        ]
        # Ties broken by customer id
        balances.sort(key=lambda b: (-b.balance.cents, b.customer_id))
        return balances

    @traced_engine("receivables_by_method", "1.0", fingerprint_fields=("start_date", "end_date"))
    def payments_by_method(
        self,
        payments: Sequence[Payment],
        start_date: date,
        end_date: date,
    ) -> PaymentsByMethodReport:
        """
        Count and total payments per method, in PaymentMethod declaration order.

        Methods with no payments in range are omitted.
        """
        if start_date > end_date:
            raise InvalidDateRangeError(start_date, end_date)

        counts: dict[PaymentMethod, int] = defaultdict(int)
        totals: dict[PaymentMethod, Money] = defaultdict(lambda: Money(0))
        for payment in payments:
            if not start_date <= payment.payment_date <= end_date:
                continue
            counts[payment.method] += 1
            totals[payment.method] = totals[payment.method] + payment.amount

        rows = tuple(
            MethodTotal(method=method, payment_count=counts[method], total=totals[method])
            for method in PaymentMethod
            if counts.get(method)
        )
        return PaymentsByMethodReport(start_date=start_date, end_date=end_date, rows=rows)
