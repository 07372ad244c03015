"""
Module: billing_engines.allocation
Responsibility:
    Apply a single customer payment across that customer's open invoices,
    oldest debt first by default, producing the updated invoice snapshots
    and the per-invoice applications that make up the payment receipt.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel domain values, documents and exceptions.

Invariants enforced:
    - Conservation: sum(applications) + unapplied == payment amount.
    - Each touched invoice ends with amount_paid <= total and
      balance_due == total - amount_paid (checked by Invoice itself).
    - Walk order is total and deterministic for every ordering policy.
    - All arithmetic is integer cents.
    - Purity: no clock access, no I/O.

Failure modes:
    - InvalidPaymentAmountError when amount <= 0.
    - InvoiceNotFoundError when a selected id is not one of the customer's
      invoices.
    - NoOutstandingBalanceError when no candidate invoice has a balance.
    - ValueError for SELECTED_ORDER without selected ids.

Usage:
    from billing_engines.allocation import AllocationEngine, AllocationOrder
    from billing_kernel.domain.values import Money

    engine = AllocationEngine()
    plan = engine.allocate(
        customer_id="cust-1",
        payment_id="pay-1",
        amount=Money.of("130.00"),
        invoices=open_invoices,
        order=AllocationOrder.OLDEST_DUE_FIRST,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from billing_engines.tracer import traced_engine
from billing_kernel.domain.documents import Invoice
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import (
    InvalidPaymentAmountError,
    InvoiceNotFoundError,
    NoOutstandingBalanceError,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class AllocationOrder(str, Enum):
    """Order in which open invoices receive a payment."""

    OLDEST_DUE_FIRST = "oldest_due_first"  # Due date, then invoice date
    OLDEST_ISSUED_FIRST = "oldest_issued_first"  # Invoice date only
    SELECTED_ORDER = "selected_order"  # Exactly as the user picked them


@dataclass(frozen=True)
class AppliedInvoice:
    """
    One line of an allocation: what a single invoice received.

    Guarantees:
        - ``amount_applied`` is strictly positive; untouched invoices never
          appear as lines.
    """

    invoice_id: str
    invoice_number: str
    amount_applied: Money
    balance_due_after: Money

    @property
    def is_fully_paid(self) -> bool:
        return self.balance_due_after.is_zero


@dataclass(frozen=True)
class AllocationPlan:
    """
    Complete allocation result, ready to be persisted.

    Contract:
        ``applications``, ``updated_invoices`` and ``original_invoices`` are
        parallel tuples in processing order.
    Guarantees:
        - ``total_applied + unapplied == amount``.
    Non-goals:
        - Does not persist anything; the allocation service owns the commit.
    """

    customer_id: str
    payment_id: str
    amount: Money
    order: AllocationOrder
    applications: tuple[AppliedInvoice, ...]
    updated_invoices: tuple[Invoice, ...]
    original_invoices: tuple[Invoice, ...]
    unapplied: Money
    total_outstanding: Money

    @property
    def total_applied(self) -> Money:
        return sum((a.amount_applied for a in self.applications), Money(0))

    @property
    def is_fully_applied(self) -> bool:
        """True if no part of the payment was left over as credit."""
        return self.unapplied.is_zero

    @property
    def invoice_ids(self) -> tuple[str, ...]:
        return tuple(a.invoice_id for a in self.applications)


def _oldest_due_key(invoice: Invoice) -> tuple:
    return (
        invoice.effective_due_date,
        invoice.invoice_date,
        invoice.invoice_number,
        invoice.id,
    )


def _oldest_issued_key(invoice: Invoice) -> tuple:
    return (invoice.invoice_date, invoice.invoice_number, invoice.id)


class AllocationEngine:
    """
    Allocate one payment across open invoices.

    Contract:
        Pure function of its inputs. No I/O, no database access.
    Guarantees:
        - Sequential fill: each invoice in policy order receives
          ``min(remaining, balance_due)`` until the payment is used up.
        - At most one invoice ends partially paid: the last one touched.
    Non-goals:
        - Does not decide *which* policy to use; callers select it.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("customer_id", "amount", "order"))
    def allocate(
        self,
        customer_id: str,
        payment_id: str,
        amount: Money,
        invoices: Sequence[Invoice],
        order: AllocationOrder = AllocationOrder.OLDEST_DUE_FIRST,
        selected_ids: Sequence[str] | None = None,
    ) -> AllocationPlan:
        """
        Allocate ``amount`` from payment ``payment_id`` to ``invoices``.

        Args:
            customer_id: Owner of the payment; invoices of other customers
                are never candidates.
            payment_id: Id recorded on every touched invoice.
            amount: Payment amount, must be positive.
            invoices: The customer's invoices (open or not).
            order: Ordering policy for the walk.
            selected_ids: Restrict candidates to these invoice ids.

        Returns:
            AllocationPlan with applications in processing order.
        """
        if not amount.is_positive:
            logger.warning("allocation_invalid_amount", extra={
                "customer_id": customer_id,
                "amount": str(amount),
            })
            raise InvalidPaymentAmountError(amount.amount, customer_id)

        owned = [inv for inv in invoices if inv.customer_id == customer_id]
        candidates = self._select_candidates(customer_id, owned, selected_ids)
        if not candidates:
            logger.info("allocation_no_outstanding_balance", extra={
                "customer_id": customer_id,
                "amount": str(amount),
                "invoice_count": len(owned),
            })
            raise NoOutstandingBalanceError(customer_id, amount.amount)

        ordered = self._order_candidates(candidates, order, selected_ids)
        return self._allocate_sequential(customer_id, payment_id, amount, ordered, order)

    def _select_candidates(
        self,
        customer_id: str,
        invoices: Sequence[Invoice],
        selected_ids: Sequence[str] | None,
    ) -> list[Invoice]:
        if selected_ids is None:
            return [inv for inv in invoices if inv.is_open]

        by_id = {inv.id: inv for inv in invoices}
        missing = [i for i in selected_ids if i not in by_id]
        if missing:
            raise InvoiceNotFoundError(customer_id, missing)
        wanted = set(selected_ids)
        return [inv for inv in invoices if inv.id in wanted and inv.is_open]

    def _order_candidates(
        self,
        candidates: list[Invoice],
        order: AllocationOrder,
        selected_ids: Sequence[str] | None,
    ) -> list[Invoice]:
        match order:
            case AllocationOrder.OLDEST_DUE_FIRST:
                return sorted(candidates, key=_oldest_due_key)
            case AllocationOrder.OLDEST_ISSUED_FIRST:
                return sorted(candidates, key=_oldest_issued_key)
            case AllocationOrder.SELECTED_ORDER:
                if selected_ids is None:
                    raise ValueError("SELECTED_ORDER allocation requires selected_ids")
                rank = {inv_id: i for i, inv_id in reversed(list(enumerate(selected_ids)))}
                return sorted(candidates, key=lambda inv: rank[inv.id])
            case _:
                raise ValueError(f"Unknown allocation order: {order}")

    def _allocate_sequential(
        self,
        customer_id: str,
        payment_id: str,
        amount: Money,
        ordered: Sequence[Invoice],
        order: AllocationOrder,
    ) -> AllocationPlan:
        """Fill invoices in order until the payment is exhausted."""
        remaining = amount.cents
        applications: list[AppliedInvoice] = []
        updated: list[Invoice] = []
        originals: list[Invoice] = []

        for invoice in ordered:
            if remaining == 0:
                break
            applied = min(remaining, invoice.balance_due.cents)
            remaining -= applied

            after = invoice.apply_payment(payment_id, Money.from_cents(applied))
            applications.append(
                AppliedInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    amount_applied=Money.from_cents(applied),
                    balance_due_after=after.balance_due,
                )
            )
            updated.append(after)
            originals.append(invoice)

        total_outstanding = sum((inv.balance_due for inv in ordered), Money(0))
        unapplied = Money.from_cents(remaining)

        plan = AllocationPlan(
            customer_id=customer_id,
            payment_id=payment_id,
            amount=amount,
            order=order,
            applications=tuple(applications),
            updated_invoices=tuple(updated),
            original_invoices=tuple(originals),
            unapplied=unapplied,
            total_outstanding=total_outstanding,
        )

        # INVARIANT: conservation -- applied + unapplied == amount
        assert plan.total_applied + plan.unapplied == amount, (
            f"Allocation conservation violated: "
            f"{plan.total_applied} + {plan.unapplied} != {amount}"
        )

        logger.info("allocation_sequential_completed", extra={
            "customer_id": customer_id,
            "payment_id": payment_id,
            "order": order.value,
            "amount": str(amount),
            "total_applied": str(plan.total_applied),
            "unapplied": str(unapplied),
            "invoices_touched": len(applications),
            "candidate_count": len(ordered),
        })

        return plan
