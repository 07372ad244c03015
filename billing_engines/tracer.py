"""
billing_engines.tracer -- BILLING_ENGINE_TRACE records for engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine method and logs one trace record
    per successful call: engine name and version, the qualified function
    name, the call duration, and a fingerprint of selected arguments. Two
    calls with equal fingerprinted arguments produce equal fingerprints, so
    a statement or allocation can be matched to the inputs that built it.

Architecture position:
    Engines -- support for the pure calculation layer. Emits a log record
    and nothing else; arguments are never mutated.

Failure modes:
    - A fingerprint field the call did not receive hashes as null.
    - Exceptions from the engine propagate unchanged and produce no trace.

Usage:
    @traced_engine("statement", "1.0", fingerprint_fields=("customer_id",))
    def build(self, customer_id, start_date, end_date, transactions):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import json
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from billing_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonical(value: Any) -> Any:
    """JSON-friendly stand-in for values json cannot encode natively."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """
    SHA-256 over the named arguments, truncated to FINGERPRINT_LENGTH hex chars.

    Arguments are serialized as sorted-key JSON, so mapping order and
    argument order do not matter.
    """
    selected = {name: arguments.get(name) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, default=_canonical)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Decorate an engine function or method with trace logging.

    Positional and keyword arguments are both bound to parameter names
    before fingerprinting.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            _logger.info("BILLING_ENGINE_TRACE", extra={
                "trace_type": "BILLING_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "function": func.__qualname__,
                "input_fingerprint": fingerprint,
                "duration_ms": round(elapsed_ms, 3),
            })
            return result

        return wrapper

    return decorator
