from datetime import datetime, timedelta, timezone

from assured.scenario.metrics import Metrics, summarize_durations
from assured.steps.results import StepKind, StepMetadata, StepResult

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _result(ms, ok=True):
    meta = StepMetadata(started_at=T0, completed_at=T0 + timedelta(milliseconds=ms))
    return StepResult(kind=StepKind.PRODUCE, success=ok, metadata=meta)


def test_aggregate_counts_and_percentiles():
    results = [_result(ms) for ms in (10, 20, 30, 40)] + [_result(100, ok=False)]
    summary = Metrics().aggregate(results)
    assert summary["count"] == 5
    assert summary["ok"] == 4
    assert summary["failed"] == 1
    assert summary["p50_ms"] == 30.0
    assert summary["max_ms"] == 100.0
    assert 40.0 <= summary["p95_ms"] <= 100.0


def test_single_and_empty():
    assert summarize_durations([_result(5)])["p95_ms"] == 5.0
    empty = summarize_durations([])
    assert empty["count"] == 0
    assert empty["p50_ms"] is None
