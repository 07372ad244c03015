"""
Module: billing_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines. This is
    the import surface for billing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel domain values, documents and exceptions.
    MUST NOT import billing_store or billing_services.

Invariants enforced:
    - Purity: engines never read the clock. Dates and ids are parameters.
    - Integer-cent arithmetic for every monetary amount.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``billing_engines.tracer``), emitting BILLING_ENGINE_TRACE records.

Usage:
    from billing_engines import AllocationEngine, StatementEngine
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("engines")

from billing_engines.allocation import (
    AllocationEngine,
    AllocationOrder,
    AllocationPlan,
    AppliedInvoice,
)
from billing_engines.receivables import (
    CustomerBalance,
    CustomerOutstanding,
    MethodTotal,
    OutstandingReport,
    PaymentsByMethodReport,
    ReceivablesCalculator,
)
from billing_engines.statement import (
    Statement,
    StatementEngine,
    StatementLine,
    StatementTransaction,
    TransactionType,
    collect_transactions,
)
from billing_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllocationEngine",
    "AllocationOrder",
    "AllocationPlan",
    "AppliedInvoice",
    "CustomerBalance",
    "CustomerOutstanding",
    "MethodTotal",
    "OutstandingReport",
    "PaymentsByMethodReport",
    "ReceivablesCalculator",
    "Statement",
    "StatementEngine",
    "StatementLine",
    "StatementTransaction",
    "TransactionType",
    "collect_transactions",
    "compute_input_fingerprint",
    "traced_engine",
]
