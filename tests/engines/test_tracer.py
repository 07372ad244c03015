"""Tests for the engine tracer (BILLING_ENGINE_TRACE)."""

from datetime import date

import pytest

from billing_engines.allocation import AllocationEngine, AllocationOrder
from billing_engines.tracer import compute_input_fingerprint, traced_engine
from billing_kernel.domain.values import Money


class TestFingerprint:
    def test_deterministic(self):
        kwargs = {"customer_id": "cust-1", "amount": Money.of("10.00")}
        first = compute_input_fingerprint(("customer_id", "amount"), kwargs)
        second = compute_input_fingerprint(("customer_id", "amount"), dict(reversed(kwargs.items())))

        assert first == second
        assert len(first) == 16

    def test_changes_with_selected_input(self):
        fields = ("customer_id",)
        assert compute_input_fingerprint(fields, {"customer_id": "a"}) != (
            compute_input_fingerprint(fields, {"customer_id": "b"})
        )

    def test_unselected_input_ignored(self):
        fields = ("customer_id",)
        assert compute_input_fingerprint(fields, {"customer_id": "a", "other": 1}) == (
            compute_input_fingerprint(fields, {"customer_id": "a", "other": 2})
        )

    def test_missing_field_recorded_as_null(self):
        assert compute_input_fingerprint(("absent",), {}) == (
            compute_input_fingerprint(("absent",), {"absent": None})
        )


class TestTracedEngine:
    def test_trace_emitted_with_result_unchanged(self, captured_logs):
        @traced_engine("doubler", "2.1", fingerprint_fields=("value",))
        def double(value):
            return value * 2

        assert double(value=21) == 42

        (trace,) = [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]
        assert trace["engine_name"] == "doubler"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(("value",), {"value": 21})
        assert trace["duration_ms"] >= 0

    def test_positional_and_keyword_calls_fingerprint_alike(self, captured_logs):
        @traced_engine("adder", "1.0", fingerprint_fields=("a", "b"))
        def add(a, b):
            return a + b

        add(1, 2)
        add(b=2, a=1)

        traces = [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]

    def test_exception_propagates_without_trace(self, captured_logs):
        @traced_engine("broken", "1.0")
        def broken():
            raise ZeroDivisionError

        with pytest.raises(ZeroDivisionError):
            broken()

        assert not [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]

    def test_allocation_engine_traced(self, captured_logs, make_invoice):
        AllocationEngine().allocate(
            customer_id="cust-1",
            payment_id="pay-1",
            amount=Money.of("10.00"),
            invoices=[make_invoice("inv-1", due_date=date(2024, 1, 31))],
            order=AllocationOrder.OLDEST_DUE_FIRST,
        )

        traces = [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]
        assert [t["engine_name"] for t in traces] == ["allocation"]
        assert traces[0]["function"] == "AllocationEngine.allocate"
