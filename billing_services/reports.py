"""
Receivables reports and print payloads.

Responsibility:
    - ReceivablesReportService: outstanding invoices, customer balances and
      payments by method, read from the document store and summarised by
      billing_engines.receivables.
    - receipt_payload / statement_payload / outstanding_payload: plain dicts
      for the print collaborator. Amounts are two-decimal strings, dates
      are ISO strings, and the letterhead logo URL is public.

Architecture position:
    Services. Payload builders are pure functions; only the report service
    touches the store.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any
from urllib.parse import quote

from billing_config.schema import Letterhead
from billing_engines.receivables import (
    CustomerBalance,
    OutstandingReport,
    PaymentsByMethodReport,
    ReceivablesCalculator,
)
from billing_engines.statement import Statement
from billing_kernel.domain.values import Money
from billing_kernel.logging_config import get_logger
from billing_services.payment_allocation import AllocationRecord
from billing_store.interface import DocumentStore

logger = get_logger("services.reports")

_GCS_PUBLIC_URL = "https://firebasestorage.googleapis.com/v0/b/{bucket}/o/{path}?alt=media"


class ReceivablesReportService:
    """Read-only receivables reports over the whole book."""

    def __init__(self, store: DocumentStore, store_timeout: float | None = None):
        self._store = store
        self._timeout = store_timeout
        self._calculator = ReceivablesCalculator()

    def outstanding_invoices(self) -> OutstandingReport:
        invoices = self._store.get_outstanding_invoices(timeout=self._timeout)
        return self._calculator.outstanding_report(invoices=invoices)

    def customer_balances(self) -> list[CustomerBalance]:
        invoices = self._store.get_outstanding_invoices(timeout=self._timeout)
        return self._calculator.customer_balances(invoices=invoices)

    def payments_by_method(self, start_date: date, end_date: date) -> PaymentsByMethodReport:
        payments = self._store.get_payments_between(start_date, end_date, timeout=self._timeout)
        return self._calculator.payments_by_method(
            payments=payments, start_date=start_date, end_date=end_date
        )


# ---------------------------------------------------------------------------
# Print payloads
# ---------------------------------------------------------------------------


def resolve_logo_url(url: str | None) -> str | None:
    """
    Public HTTPS URL for a logo.

    ``gs://bucket/path/to/logo.png`` becomes the Firebase Storage download
    URL; other URLs pass through. A ``gs://`` URL without a bucket or
    object path yields None.
    """
    if not url:
        return None
    if not url.startswith("gs://"):
        return url
    bucket, _, object_path = url[len("gs://"):].partition("/")
    if not bucket or not object_path:
        logger.warning("letterhead_logo_url_invalid", extra={"logo_url": url})
        return None
    return _GCS_PUBLIC_URL.format(bucket=bucket, path=quote(object_path, safe="!*'()"))


def _amount(value: Money) -> str:
    return f"{value.amount:.2f}"


def _letterhead(letterhead: Letterhead) -> dict[str, Any]:
    return {
        "company_name": letterhead.company_name,
        "address_lines": list(letterhead.address_lines),
        "logo_url": resolve_logo_url(letterhead.logo_url),
    }


def receipt_payload(
    record: AllocationRecord,
    customer_name: str,
    letterhead: Letterhead,
) -> dict[str, Any]:
    """Payment receipt: payment details plus one row per invoice paid."""
    return {
        "letterhead": _letterhead(letterhead),
        "customer_name": customer_name,
        "payment_id": record.payment_id,
        "payment_reference": record.payment_id[:8],
        "payment_date": record.payment_date.isoformat(),
        "method": record.method.value,
        "notes": record.notes,
        "amount": _amount(record.amount),
        "applications": [
            {
                "invoice_id": a.invoice_id,
                "invoice_number": a.invoice_number,
                "amount_applied": _amount(a.amount_applied),
                "balance_due_after": _amount(a.balance_due_after),
            }
            for a in record.applications
        ],
        "total_applied": _amount(record.total_applied),
        "unapplied_amount": _amount(record.unapplied_amount),
    }


def statement_payload(
    statement: Statement,
    customer_name: str,
    letterhead: Letterhead,
) -> dict[str, Any]:
    """Customer statement with opening, lines and closing balance."""
    return {
        "letterhead": _letterhead(letterhead),
        "customer_id": statement.customer_id,
        "customer_name": customer_name,
        "start_date": statement.start_date.isoformat(),
        "end_date": statement.end_date.isoformat(),
        "opening_balance": _amount(statement.opening_balance),
        "lines": [
            {
                "date": line.line_date.isoformat(),
                "type": line.transaction_type.value,
                "document_number": line.document_number,
                "debit": _amount(line.debit),
                "credit": _amount(line.credit),
                "balance": _amount(line.balance),
            }
            for line in statement.lines
        ],
        "total_debits": _amount(statement.total_debits),
        "total_credits": _amount(statement.total_credits),
        "closing_balance": _amount(statement.closing_balance),
    }


def outstanding_payload(
    report: OutstandingReport,
    letterhead: Letterhead,
    customer_names: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Outstanding invoices report, grouped per customer."""
    names = customer_names or {}
    return {
        "letterhead": _letterhead(letterhead),
        "customers": [
            {
                "customer_id": group.customer_id,
                "customer_name": names.get(group.customer_id, group.customer_id),
                "invoices": [
                    {
                        "invoice_number": inv.invoice_number,
                        "invoice_date": inv.invoice_date.isoformat(),
                        "due_date": inv.due_date.isoformat() if inv.due_date else None,
                        "total": _amount(inv.total),
                        "amount_paid": _amount(inv.amount_paid),
                        "balance_due": _amount(inv.balance_due),
                        "status": inv.status.value,
                    }
                    for inv in group.invoices
                ],
                "total": _amount(group.total),
            }
            for group in report.groups
        ],
        "grand_total": _amount(report.grand_total),
    }
