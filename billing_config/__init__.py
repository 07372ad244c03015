"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime. It merges an optional override YAML file over the packaged
    ``defaults.yaml`` and returns a frozen ``BillingConfig``.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and ``billing_engines``
    and below ``billing_services``. Services receive the config (or one
    of its sections) through their constructors.

Failure modes:
    - ``FileNotFoundError`` -- the override path does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    the configuration checksum and the effective allocation settings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import DEFAULTS_PATH, load_yaml_file, merge_config_data, parse_config
from billing_config.schema import (
    AllocationSettings,
    BillingConfig,
    Letterhead,
    StatementSettings,
)

_logger = logging.getLogger("billing_kernel.config")


def get_active_config(config_path: Path | str | None = None) -> BillingConfig:
    """Load the effective configuration.

    Args:
        config_path: Optional YAML file whose values override the
            packaged defaults.

    Returns:
        BillingConfig -- frozen, validated.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the configuration has unknown keys or bad values.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)
    if config_path is not None:
        data = merge_config_data(data, load_yaml_file(Path(config_path)))
        source = str(config_path)

    config = parse_config(data)

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "source": source,
            "checksum": config.checksum,
            "currency_code": config.currency_code,
            "allocation_order": config.allocation.order.value,
            "max_attempts": config.allocation.max_attempts,
            "include_orders": config.statement.include_orders,
        },
    )

    return config


__all__ = [
    "AllocationSettings",
    "BillingConfig",
    "Letterhead",
    "StatementSettings",
    "get_active_config",
]
