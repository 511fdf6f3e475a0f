"""Prometheus instruments for relayed calls."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

from RequestRelay.proxy.types import NormalizedResult

# Counter: relayed calls by result kind and the status they report
_relay_results = Counter(
    "relay_results_total",
    "Relayed calls by result kind and status",
    ["kind", "status"],
)

# Histogram: end-to-end call duration (milliseconds)
_relay_duration = Histogram(
    "relay_call_duration_ms",
    "Relayed call duration in milliseconds, validation through result",
    ["kind"],
    buckets=(5.0, 25.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0, float("inf")),
)

# Counter: egress policy decisions
_egress_decisions = Counter(
    "relay_egress_decisions_total",
    "Egress policy decisions by outcome",
    ["outcome"],
)


def record_result(result: NormalizedResult) -> None:
    """Count one finished call and observe its duration."""
    status = result.http_status if result.kind == "transport_failure" else result.status
    _relay_results.labels(kind=result.kind, status=str(status)).inc()
    _relay_duration.labels(kind=result.kind).observe(result.duration_ms)


def record_egress(allowed: bool) -> None:
    _egress_decisions.labels(outcome="allow" if allowed else "deny").inc()


__all__ = ["record_result", "record_egress"]
