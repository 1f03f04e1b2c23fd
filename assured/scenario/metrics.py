import statistics


def _percentile(sorted_values: list[float], pct: float) -> float:
    if len(sorted_values) == 1:
        return sorted_values[0]
    # inclusive method keeps p50/p95 inside the observed range
    cuts = statistics.quantiles(sorted_values, n=100, method="inclusive")
    return cuts[int(pct) - 1]


class Metrics:
    def aggregate(self, results: list) -> dict:
        # results: StepResult items of one batch
        # -> count, ok, failed, p50/p95/max duration in ms
        durations = sorted(
            r.metadata.duration_ms for r in results if r.metadata.duration_ms is not None
        )
        ok = sum(1 for r in results if r.success)
        summary = {
            "count": len(results),
            "ok": ok,
            "failed": len(results) - ok,
            "p50_ms": None,
            "p95_ms": None,
            "max_ms": None,
        }
        if durations:
            summary["p50_ms"] = round(_percentile(durations, 50), 3)
            summary["p95_ms"] = round(_percentile(durations, 95), 3)
            summary["max_ms"] = round(durations[-1], 3)
        return summary


def summarize_durations(results: list) -> dict:
    return Metrics().aggregate(results)
