"""
Billing configuration schema.

Frozen dataclasses produced by ``billing_config.loader`` from YAML. Services
receive these by constructor injection and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass

from billing_engines.allocation import AllocationOrder


@dataclass(frozen=True)
class AllocationSettings:
    """How payments are allocated and how long allocation may wait."""

    order: AllocationOrder = AllocationOrder.OLDEST_DUE_FIRST
    max_attempts: int = 3
    lock_timeout_seconds: float = 10.0
    store_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.store_timeout_seconds <= 0:
            raise ValueError("store_timeout_seconds must be positive")


@dataclass(frozen=True)
class StatementSettings:
    include_orders: bool = False


@dataclass(frozen=True)
class Letterhead:
    """Company block printed at the top of receipts and statements."""

    company_name: str = ""
    address_lines: tuple[str, ...] = ()
    logo_url: str | None = None


@dataclass(frozen=True)
class BillingConfig:
    """
    The complete runtime configuration.

    ``checksum`` is the SHA-256 of the merged YAML data, logged with every
    ``get_active_config()`` call.
    """

    currency_code: str = "USD"
    allocation: AllocationSettings = AllocationSettings()
    statement: StatementSettings = StatementSettings()
    letterhead: Letterhead = Letterhead()
    checksum: str = ""
