"""
Module: billing_store.sql
Responsibility: ``DocumentStore`` backed by a relational database through
    the SQLAlchemy 2.0 ORM.
Architecture position: Store layer. Uses billing_kernel.db for sessions and
    billing_store.orm for the table mapping.

Invariants enforced:
    - One database transaction per ``commit_batch``: the batch commits as a
      whole or rolls back as a whole (``atomic_batches = True``).
    - Invoice updates are conditional: ``UPDATE ... WHERE id = :id AND
      version = :expected``. Zero affected rows means a concurrent writer
      won and the batch fails with ``StaleDocumentError``.

Failure modes:
    - StaleDocumentError on a version mismatch.
    - StoreTimeoutError when PostgreSQL cancels a statement for exceeding
      ``statement_timeout`` or the database reports a lock timeout.
    - StoreError wrapping any other SQLAlchemyError (duplicate ids included).

Timeouts are enforced by the database: on PostgreSQL each transaction runs
with ``SET LOCAL statement_timeout``. Other dialects rely on their own
connection-level lock timeouts.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.db.engine import session_scope
from billing_kernel.domain.documents import Invoice, InvoiceStatus, Order, Payment
from billing_kernel.exceptions import StaleDocumentError, StoreError, StoreTimeoutError
from billing_kernel.logging_config import get_logger
from billing_store.interface import (
    CreateInvoice,
    CreateOrder,
    CreatePayment,
    DocumentWrite,
    UpdateInvoice,
)
from billing_store.orm import (
    InvoiceLineModel,
    InvoiceModel,
    OrderModel,
    PaymentModel,
)

logger = get_logger("store.sql")

# SQLSTATE for query_canceled (statement_timeout) and lock_not_available
_PG_TIMEOUT_CODES = frozenset({"57014", "55P03"})


def _is_timeout(exc: OperationalError) -> bool:
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if code in _PG_TIMEOUT_CODES:
        return True
    message = str(exc.orig).lower()
    return "timeout" in message or "database is locked" in message


class SqlDocumentStore:
    """Relational document store with optimistic invoice versioning."""

    atomic_batches = True

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        default_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._default_timeout = default_timeout

    @contextmanager
    def _session(self, operation: str, timeout: float | None) -> Iterator[Session]:
        """One transaction with the statement timeout applied and errors mapped."""
        limit = timeout if timeout is not None else self._default_timeout
        try:
            with session_scope(self._session_factory) as session:
                if limit is not None and session.get_bind().dialect.name == "postgresql":
                    session.execute(text(f"SET LOCAL statement_timeout = {int(limit * 1000)}"))
                yield session
        except OperationalError as exc:
            if _is_timeout(exc):
                logger.warning("store_timeout", extra={"operation": operation, "timeout": limit})
                raise StoreTimeoutError(operation, limit) from exc
            raise StoreError(f"{operation} failed: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.error("store_operation_failed", extra={
                "operation": operation,
                "error_type": type(exc).__name__,
            })
            raise StoreError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: str, timeout: float | None = None) -> Invoice | None:
        with self._session("get_invoice", timeout) as session:
            model = session.get(InvoiceModel, invoice_id)
            return model.to_dto() if model is not None else None

    def get_payment(self, payment_id: str, timeout: float | None = None) -> Payment | None:
        with self._session("get_payment", timeout) as session:
            model = session.get(PaymentModel, payment_id)
            return model.to_dto() if model is not None else None

    def get_invoices_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Invoice]:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.customer_id == customer_id)
            .order_by(InvoiceModel.invoice_date, InvoiceModel.invoice_number, InvoiceModel.id)
        )
        with self._session("get_invoices_by_customer", timeout) as session:
            return [m.to_dto() for m in session.scalars(stmt)]

    def get_payments_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Payment]:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.customer_id == customer_id)
            .order_by(PaymentModel.payment_date, PaymentModel.created_at, PaymentModel.id)
        )
        with self._session("get_payments_by_customer", timeout) as session:
            return [m.to_dto() for m in session.scalars(stmt)]

    def get_orders_by_customer(
        self, customer_id: str, timeout: float | None = None
    ) -> list[Order]:
        stmt = (
            select(OrderModel)
            .where(OrderModel.customer_id == customer_id)
            .order_by(OrderModel.order_date, OrderModel.id)
        )
        with self._session("get_orders_by_customer", timeout) as session:
            return [m.to_dto() for m in session.scalars(stmt)]

    def get_outstanding_invoices(self, timeout: float | None = None) -> list[Invoice]:
        stmt = (
            select(InvoiceModel)
            .where(
                InvoiceModel.balance_due_cents > 0,
                InvoiceModel.status != InvoiceStatus.VOIDED.value,
            )
            .order_by(InvoiceModel.customer_id, InvoiceModel.invoice_date, InvoiceModel.id)
        )
        with self._session("get_outstanding_invoices", timeout) as session:
            return [m.to_dto() for m in session.scalars(stmt)]

    def get_payments_between(
        self, start_date: date, end_date: date, timeout: float | None = None
    ) -> list[Payment]:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.payment_date.between(start_date, end_date))
            .order_by(PaymentModel.payment_date, PaymentModel.created_at, PaymentModel.id)
        )
        with self._session("get_payments_between", timeout) as session:
            return [m.to_dto() for m in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def commit_batch(self, writes: Sequence[DocumentWrite], timeout: float | None = None) -> None:
        """Apply ``writes`` in one transaction."""
        with self._session("commit_batch", timeout) as session:
            for write in writes:
                self._apply(session, write)
            session.flush()

        logger.debug("store_batch_committed", extra={"write_count": len(writes)})

    def _apply(self, session: Session, write: DocumentWrite) -> None:
        match write:
            case CreateInvoice(invoice=invoice):
                session.add(InvoiceModel.from_dto(invoice))
            case UpdateInvoice(invoice=invoice, expected_version=expected):
                self._update_invoice(session, invoice, expected)
            case CreatePayment(payment=payment):
                session.add(PaymentModel.from_dto(payment))
            case CreateOrder(order=order):
                session.add(OrderModel.from_dto(order))
            case _:
                raise StoreError(f"Unsupported write: {type(write).__name__}")

    def _update_invoice(self, session: Session, invoice: Invoice, expected: int) -> None:
        result = session.execute(
            update(InvoiceModel)
            .where(InvoiceModel.id == invoice.id, InvoiceModel.version == expected)
            .values(**InvoiceModel.column_values(invoice))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = session.scalar(
                select(InvoiceModel.version).where(InvoiceModel.id == invoice.id)
            )
            logger.info("store_stale_document", extra={
                "document_id": invoice.id,
                "expected_version": expected,
                "actual_version": actual,
            })
            raise StaleDocumentError(invoice.id, expected, actual)

        session.execute(delete(InvoiceLineModel).where(InvoiceLineModel.invoice_id == invoice.id))
        session.add_all(InvoiceLineModel.lines_for(invoice))
