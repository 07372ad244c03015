"""
Billing services -- the imperative shell.

Services read and write through a ``DocumentStore``, delegate every
calculation to ``billing_engines``, and own the commit boundary.
"""

from billing_services.locks import CustomerLockRegistry
from billing_services.payment_allocation import AllocationRecord, PaymentAllocationService
from billing_services.reports import (
    ReceivablesReportService,
    outstanding_payload,
    receipt_payload,
    resolve_logo_url,
    statement_payload,
)
from billing_services.statement import StatementService

__all__ = [
    "AllocationRecord",
    "CustomerLockRegistry",
    "PaymentAllocationService",
    "ReceivablesReportService",
    "StatementService",
    "outstanding_payload",
    "receipt_payload",
    "resolve_logo_url",
    "statement_payload",
]
