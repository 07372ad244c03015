"""
Module: billing_services.payment_allocation
Responsibility:
    Record a customer payment: read the customer's invoices, run the
    AllocationEngine, and persist the updated invoices together with the
    new Payment document as one logical unit.

Architecture position:
    Services -- imperative shell around billing_engines.allocation.
    Owns the commit boundary; the engine stays pure.

Invariants enforced:
    - All-or-nothing: either every invoice update and the payment are
      stored, or none of them remain. Atomic stores get one batch;
      non-atomic stores get sequential writes with compensation.
    - Single writer per customer in this process (CustomerLockRegistry),
      plus optimistic version checks against writers elsewhere.
    - Bounded work: lock wait, store calls and retry count are all capped
      by AllocationSettings.

Failure modes:
    - InvalidPaymentAmountError: amount <= 0 (nothing read or written).
    - NoOutstandingBalanceError / InvoiceNotFoundError: from the engine.
    - AllocationConflictError: lock wait timed out, or every attempt hit a
      concurrent modification.
    - AllocationPersistenceError: the store failed; ``rollback_succeeded``
      tells whether compensation restored the invoices.

Audit relevance:
    Every allocation logs allocation_started and then either
    allocation_committed or the failure event, bound to the customer and
    payment ids through LogContext.

Usage:
    service = PaymentAllocationService(store, settings=config.allocation)
    record = service.allocate_payment(
        customer_id="cust-1",
        amount=Money.of("130.00"),
        method=PaymentMethod.CHECK,
        payment_date=date(2024, 3, 1),
    )
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

from billing_config.schema import AllocationSettings
from billing_engines.allocation import (
    AllocationEngine,
    AllocationOrder,
    AllocationPlan,
    AppliedInvoice,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.documents import Payment, PaymentApplication, PaymentMethod
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import (
    AllocationConflictError,
    AllocationPersistenceError,
    InvalidPaymentAmountError,
    StaleDocumentError,
    StoreError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_services.locks import CustomerLockRegistry
from billing_store.interface import CreatePayment, DocumentStore, DocumentWrite, UpdateInvoice

logger = get_logger("services.payment_allocation")


@dataclass(frozen=True)
class AllocationRecord:
    """
    Receipt for one recorded payment.

    Guarantees:
        - ``total_applied + unapplied_amount == amount``.
    """

    payment_id: str
    customer_id: str
    payment_date: date
    amount: Money
    method: PaymentMethod
    notes: str | None
    applications: tuple[AppliedInvoice, ...]
    unapplied_amount: Money
    attempts: int = 1

    @property
    def total_applied(self) -> Money:
        return sum((a.amount_applied for a in self.applications), Money(0))

    @property
    def has_unapplied_credit(self) -> bool:
        return self.unapplied_amount.is_positive

    @property
    def invoice_numbers(self) -> tuple[str, ...]:
        return tuple(a.invoice_number for a in self.applications)


class PaymentAllocationService:
    """
    Allocate and persist customer payments.

    The lock registry may be shared between services that write the same
    customers; by default each service gets its own.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: AllocationSettings | None = None,
        clock: Clock | None = None,
        locks: CustomerLockRegistry | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._store = store
        self._settings = settings if settings is not None else AllocationSettings()
        self._clock = clock if clock is not None else SystemClock()
        self._locks = locks if locks is not None else CustomerLockRegistry()
        self._new_id = id_factory if id_factory is not None else (lambda: str(uuid4()))
        self._engine = AllocationEngine()

    # =========================================================================
    # Public API
    # =========================================================================

    def allocate_payment(
        self,
        customer_id: str,
        amount: Money | Decimal | str,
        method: PaymentMethod | str,
        payment_date: date,
        notes: str | None = None,
        invoice_ids: Sequence[str] | None = None,
    ) -> AllocationRecord:
        """
        Record a payment and apply it to the customer's open invoices.

        Args:
            customer_id: Paying customer.
            amount: Payment amount; must be positive.
            method: Tender method.
            payment_date: Date printed on the receipt and statement.
            notes: Free text stored on the payment.
            invoice_ids: Restrict allocation to these invoices.

        Returns:
            AllocationRecord describing what each invoice received.
        """
        amount = amount if isinstance(amount, Money) else Money.of(amount)
        method = PaymentMethod(method)
        if not amount.is_positive:
            logger.warning("allocation_invalid_amount", extra={
                "customer_id": customer_id,
                "amount": str(amount),
            })
            raise InvalidPaymentAmountError(amount.amount, customer_id)

        payment_id = self._new_id()
        selected = tuple(invoice_ids) if invoice_ids is not None else None

        with LogContext.bind(customer_id=customer_id, payment_id=payment_id):
            logger.info("allocation_started", extra={
                "amount": str(amount),
                "method": method.value,
                "payment_date": payment_date,
                "selected_invoice_count": len(selected) if selected is not None else None,
            })

            with self._locks.hold(customer_id, self._settings.lock_timeout_seconds) as acquired:
                if not acquired:
                    raise AllocationConflictError(
                        customer_id, amount.amount, attempts=0, invoice_ids=selected or ()
                    )
                return self._allocate_with_retry(
                    customer_id, payment_id, amount, method, payment_date, notes, selected
                )

    def preview_allocation(
        self,
        customer_id: str,
        amount: Money | Decimal | str,
        invoice_ids: Sequence[str] | None = None,
    ) -> AllocationPlan:
        """Show how a payment would be split, without writing anything."""
        amount = amount if isinstance(amount, Money) else Money.of(amount)
        selected = tuple(invoice_ids) if invoice_ids is not None else None
        invoices = self._store.get_invoices_by_customer(
            customer_id, timeout=self._settings.store_timeout_seconds
        )
        return self._engine.allocate(
            customer_id=customer_id,
            payment_id="preview",
            amount=amount,
            invoices=invoices,
            order=self._order_for(selected),
            selected_ids=selected,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _order_for(self, selected: tuple[str, ...] | None) -> AllocationOrder:
        """SELECTED_ORDER only means something when invoices were picked."""
        order = self._settings.order
        if order is AllocationOrder.SELECTED_ORDER and selected is None:
            return AllocationOrder.OLDEST_DUE_FIRST
        return order

    def _allocate_with_retry(
        self,
        customer_id: str,
        payment_id: str,
        amount: Money,
        method: PaymentMethod,
        payment_date: date,
        notes: str | None,
        selected: tuple[str, ...] | None,
    ) -> AllocationRecord:
        max_attempts = self._settings.max_attempts
        timeout = self._settings.store_timeout_seconds
        attempted: tuple[str, ...] = selected or ()

        for attempt in range(1, max_attempts + 1):
            try:
                invoices = self._store.get_invoices_by_customer(customer_id, timeout=timeout)
            except StoreError as exc:
                logger.error("allocation_read_failed", extra={
                    "attempt": attempt,
                    "error_type": type(exc).__name__,
                })
                raise AllocationPersistenceError(
                    customer_id, amount.amount, attempted, f"reading invoices failed: {exc}"
                ) from exc

            plan = self._engine.allocate(
                customer_id=customer_id,
                payment_id=payment_id,
                amount=amount,
                invoices=invoices,
                order=self._order_for(selected),
                selected_ids=selected,
            )
            attempted = plan.invoice_ids

            payment = Payment(
                id=payment_id,
                customer_id=customer_id,
                payment_date=payment_date,
                amount=amount,
                method=method,
                applications=tuple(
                    PaymentApplication(
                        invoice_id=a.invoice_id,
                        invoice_number=a.invoice_number,
                        amount_applied=a.amount_applied,
                    )
                    for a in plan.applications
                ),
                unapplied_amount=plan.unapplied,
                notes=notes,
                created_at=self._clock.now(),
            )

            try:
                self._commit(plan, payment)
            except StaleDocumentError as exc:
                logger.info("allocation_conflict_retry", extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "document_id": exc.document_id,
                })
                continue

            return self._finish(plan, payment, attempt)

        logger.error("allocation_conflict_exhausted", extra={
            "attempts": max_attempts,
            "invoice_ids": list(attempted),
        })
        raise AllocationConflictError(customer_id, amount.amount, max_attempts, attempted)

    def _writes_for(self, plan: AllocationPlan, payment: Payment) -> list[DocumentWrite]:
        writes: list[DocumentWrite] = [
            UpdateInvoice(invoice=updated, expected_version=original.version)
            for updated, original in zip(plan.updated_invoices, plan.original_invoices)
        ]
        writes.append(CreatePayment(payment=payment))
        return writes

    def _commit(self, plan: AllocationPlan, payment: Payment) -> None:
        """
        Persist the plan. StaleDocumentError escapes only when nothing
        remains applied, so the caller may retry.
        """
        writes = self._writes_for(plan, payment)
        timeout = self._settings.store_timeout_seconds

        if self._store.atomic_batches:
            try:
                self._store.commit_batch(writes, timeout=timeout)
            except StaleDocumentError:
                raise
            except StoreError as exc:
                logger.error("allocation_commit_failed", extra={
                    "invoice_ids": list(plan.invoice_ids),
                    "error_type": type(exc).__name__,
                    "atomic": True,
                })
                raise AllocationPersistenceError(
                    plan.customer_id, plan.amount.amount, plan.invoice_ids, str(exc)
                ) from exc
            return

        applied: list[UpdateInvoice] = []
        try:
            for write in writes:
                self._store.commit_batch([write], timeout=timeout)
                if isinstance(write, UpdateInvoice):
                    applied.append(write)
        except StoreError as exc:
            rolled_back = self._compensate(plan, applied)
            if isinstance(exc, StaleDocumentError) and rolled_back:
                raise
            logger.error("allocation_commit_failed", extra={
                "invoice_ids": list(plan.invoice_ids),
                "error_type": type(exc).__name__,
                "atomic": False,
                "rollback_succeeded": rolled_back,
            })
            raise AllocationPersistenceError(
                plan.customer_id,
                plan.amount.amount,
                plan.invoice_ids,
                str(exc),
                rollback_succeeded=rolled_back,
            ) from exc

    def _compensate(self, plan: AllocationPlan, applied: list[UpdateInvoice]) -> bool:
        """Restore pre-allocation snapshots of every invoice already written."""
        originals = {inv.id: inv for inv in plan.original_invoices}
        ok = True
        for write in reversed(applied):
            updated = write.invoice
            restore = replace(originals[updated.id], version=updated.version + 1)
            try:
                self._store.commit_batch(
                    [UpdateInvoice(invoice=restore, expected_version=updated.version)],
                    timeout=self._settings.store_timeout_seconds,
                )
            except StoreError:
                ok = False
                logger.critical("allocation_rollback_failed", exc_info=True, extra={
                    "invoice_id": updated.id,
                    "expected_version": updated.version,
                })
        if applied:
            logger.warning("allocation_rolled_back", extra={
                "invoice_ids": [w.invoice.id for w in applied],
                "rollback_succeeded": ok,
            })
        return ok

    def _finish(self, plan: AllocationPlan, payment: Payment, attempts: int) -> AllocationRecord:
        if plan.unapplied.is_positive:
            logger.warning("allocation_unapplied_credit", extra={
                "unapplied": str(plan.unapplied),
                "total_outstanding": str(plan.total_outstanding),
            })

        logger.info("allocation_committed", extra={
            "amount": str(plan.amount),
            "total_applied": str(plan.total_applied),
            "unapplied": str(plan.unapplied),
            "invoice_ids": list(plan.invoice_ids),
            "attempts": attempts,
        })

        return AllocationRecord(
            payment_id=payment.id,
            customer_id=payment.customer_id,
            payment_date=payment.payment_date,
            amount=payment.amount,
            method=payment.method,
            notes=payment.notes,
            applications=plan.applications,
            unapplied_amount=plan.unapplied,
            attempts=attempts,
        )
