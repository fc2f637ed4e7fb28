"""Tests for the engine tracer and its input fingerprint."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_engines.tracer import compute_input_fingerprint, traced_engine


@dataclass(frozen=True)
class _Request:
    amount: Decimal
    posting_date: date


@traced_engine("sample", "2.1", fingerprint_fields=("request",))
def _sample_engine(request, scale=1):
    return request.amount * scale


class TestFingerprint:
    def test_dict_key_order_ignored(self):
        a = compute_input_fingerprint(("x",), {"x": {"b": 1, "a": 2}})
        b = compute_input_fingerprint(("x",), {"x": {"a": 2, "b": 1}})
        assert a == b
        assert len(a) == 16

    def test_decimal_scale_is_significant(self):
        a = compute_input_fingerprint(("x",), {"x": Decimal("1.0")})
        b = compute_input_fingerprint(("x",), {"x": Decimal("1.00")})
        assert a != b

    def test_missing_field_fingerprints_as_null(self):
        assert compute_input_fingerprint(("x",), {}) == compute_input_fingerprint(
            ("x",), {"x": None}
        )


class TestTracedEngine:
    def test_result_passes_through(self):
        request = _Request(Decimal("5"), date(2024, 3, 1))
        assert _sample_engine(request, scale=2) == Decimal("10")

    def test_trace_record(self, captured_logs):
        request = _Request(Decimal("5"), date(2024, 3, 1))

        _sample_engine(request)
        _sample_engine(request, scale=3)

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["engine_name"] == "sample"
        assert traces[0]["engine_version"] == "2.1"
        # scale is not a fingerprint field
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert traces[0]["duration_ms"] >= 0
