"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into the frozen dataclasses
of ``billing_config.schema``. The public entry point is
``billing_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys are rejected with ``ValueError``; a typo never silently
  falls back to a default.
* An override file is merged section by section over the packaged
  defaults, so it only needs to name what it changes.
* ``compute_checksum`` produces a deterministic SHA-256 over the merged
  data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    AllocationSettings,
    BillingConfig,
    Letterhead,
    StatementSettings,
)
from billing_engines.allocation import AllocationOrder

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = ("allocation", "statement", "letterhead")
_TOP_LEVEL_KEYS = frozenset({"currency_code", *_SECTIONS})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _check_keys(section: str, data: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown configuration key(s) in {section}: {', '.join(unknown)}")


def merge_config_data(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``override`` on ``base``, one level deep for each section."""
    _check_keys("configuration", override, _TOP_LEVEL_KEYS)
    merged = {key: (dict(value) if isinstance(value, dict) else value) for key, value in base.items()}
    for key, value in override.items():
        if key in _SECTIONS:
            if not isinstance(value, dict):
                raise ValueError(f"Section {key} must be a mapping")
            merged.setdefault(key, {}).update(value)
        else:
            merged[key] = value
    return merged


def parse_allocation(data: dict[str, Any]) -> AllocationSettings:
    _check_keys(
        "allocation",
        data,
        frozenset({"order", "max_attempts", "lock_timeout_seconds", "store_timeout_seconds"}),
    )
    try:
        order = AllocationOrder(data.get("order", AllocationOrder.OLDEST_DUE_FIRST.value))
    except ValueError:
        allowed = ", ".join(o.value for o in AllocationOrder)
        raise ValueError(
            f"allocation.order must be one of {allowed}, got {data.get('order')!r}"
        ) from None
    return AllocationSettings(
        order=order,
        max_attempts=int(data.get("max_attempts", 3)),
        lock_timeout_seconds=float(data.get("lock_timeout_seconds", 10.0)),
        store_timeout_seconds=float(data.get("store_timeout_seconds", 30.0)),
    )


def parse_statement(data: dict[str, Any]) -> StatementSettings:
    _check_keys("statement", data, frozenset({"include_orders"}))
    include_orders = data.get("include_orders", False)
    if not isinstance(include_orders, bool):
        raise ValueError(f"statement.include_orders must be true or false, got {include_orders!r}")
    return StatementSettings(include_orders=include_orders)


def parse_letterhead(data: dict[str, Any]) -> Letterhead:
    _check_keys("letterhead", data, frozenset({"company_name", "address_lines", "logo_url"}))
    address_lines = data.get("address_lines") or []
    if isinstance(address_lines, str):
        address_lines = [address_lines]
    return Letterhead(
        company_name=str(data.get("company_name") or ""),
        address_lines=tuple(str(line) for line in address_lines),
        logo_url=data.get("logo_url") or None,
    )


def parse_config(data: dict[str, Any]) -> BillingConfig:
    """
    Parse a merged configuration dict into ``BillingConfig``.

    Postconditions:
        - ``checksum`` is the SHA-256 of ``data``.
    """
    _check_keys("configuration", data, _TOP_LEVEL_KEYS)
    currency_code = str(data.get("currency_code", "USD"))
    if len(currency_code) != 3 or not currency_code.isalpha():
        raise ValueError(f"currency_code must be a 3-letter ISO code, got {currency_code!r}")
    return BillingConfig(
        currency_code=currency_code.upper(),
        allocation=parse_allocation(data.get("allocation") or {}),
        statement=parse_statement(data.get("statement") or {}),
        letterhead=parse_letterhead(data.get("letterhead") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
