"""
Customer statement service.

Reads a customer's invoices, payments and (optionally) billable orders
from the document store and hands them to the pure StatementEngine.
Building a statement never writes to the store.

Usage:
    service = StatementService(store, settings=config.statement)
    statement = service.build_statement("cust-1", date(2024, 1, 1), date(2024, 1, 31))
"""

from __future__ import annotations

from datetime import date

from billing_config.schema import StatementSettings
from billing_engines.statement import Statement, StatementEngine, collect_transactions
from billing_kernel.exceptions import InvalidDateRangeError
from billing_kernel.logging_config import LogContext, get_logger
from billing_store.interface import DocumentStore

logger = get_logger("services.statement")


class StatementService:
    """Builds point-in-time customer statements from stored documents."""

    def __init__(
        self,
        store: DocumentStore,
        settings: StatementSettings | None = None,
        store_timeout: float | None = None,
    ):
        self._store = store
        self._settings = settings if settings is not None else StatementSettings()
        self._timeout = store_timeout
        self._engine = StatementEngine()

    def build_statement(
        self,
        customer_id: str,
        start_date: date,
        end_date: date,
        include_orders: bool | None = None,
    ) -> Statement:
        """
        Statement for ``[start_date, end_date]``.

        ``include_orders`` defaults to the configured setting. Orders, when
        included, add a debit per billable order.

        Raises:
            InvalidDateRangeError: start_date after end_date (before any read).
        """
        if start_date > end_date:
            raise InvalidDateRangeError(start_date, end_date)
        if include_orders is None:
            include_orders = self._settings.include_orders

        with LogContext.bind(customer_id=customer_id):
            invoices = self._store.get_invoices_by_customer(customer_id, timeout=self._timeout)
            payments = self._store.get_payments_by_customer(customer_id, timeout=self._timeout)
            orders = (
                self._store.get_orders_by_customer(customer_id, timeout=self._timeout)
                if include_orders
                else []
            )

            logger.debug("statement_documents_loaded", extra={
                "invoice_count": len(invoices),
                "payment_count": len(payments),
                "order_count": len(orders),
            })

            return self._engine.build(
                customer_id=customer_id,
                start_date=start_date,
                end_date=end_date,
                transactions=collect_transactions(invoices, payments, orders),
            )
