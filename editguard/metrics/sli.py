"""Pipeline SLI metrics for Prometheus.

Latency histograms (seconds):
    editguard_analysis_duration_seconds      ground-truth analysis
    editguard_validation_duration_seconds    parameter validation
    editguard_dispatch_duration_seconds      tool dispatcher call
    editguard_verification_duration_seconds  result verification
    editguard_call_duration_seconds          one tool call incl. retries
Counters:
    editguard_attempts_total{outcome}        attempts by outcome
    editguard_failures_total{mode}           classified failures by mode
    editguard_store_writes_total{status}     stored | skipped | failed
"""

from __future__ import annotations

import time
from collections.abc import Generator  # noqa: TC003 -- used at runtime by contextmanager
from contextlib import contextmanager

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

# 10ms to 2min: generative tools dominate the upper end
_LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)

_HISTOGRAMS = {
    "analysis_duration": "Time spent measuring image ground truth",
    "validation_duration": "Time spent validating tool-call parameters",
    "dispatch_duration": "Time spent in the tool dispatcher",
    "verification_duration": "Time spent verifying tool results",
    "call_duration": "Total time for one tool call including retries",
}

_COUNTERS = {
    "attempts": ("Attempts by outcome", "outcome"),
    "failures": ("Classified failures by mode", "mode"),
    "store_writes": ("Context store writes by status", "status"),
}


class PipelineSLI:
    """Pipeline metrics on one registry.

    Tests pass their own CollectorRegistry; production uses the global one.
    """

    analysis_duration: Histogram
    validation_duration: Histogram
    dispatch_duration: Histogram
    verification_duration: Histogram
    call_duration: Histogram
    attempts: Counter
    failures: Counter
    store_writes: Counter

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        target = registry if registry is not None else REGISTRY
        for attr, doc in _HISTOGRAMS.items():
            metric = Histogram(f"editguard_{attr}_seconds", doc, buckets=_LATENCY_BUCKETS, registry=target)
            setattr(self, attr, metric)
        for attr, (doc, label) in _COUNTERS.items():
            setattr(self, attr, Counter(f"editguard_{attr}", doc, [label], registry=target))

    @contextmanager
    def timer(self, histogram: Histogram) -> Generator[None, None, None]:
        """Observe elapsed time on histogram, also when the block raises."""
        start = time.monotonic()
        try:
            yield
        finally:
            histogram.observe(time.monotonic() - start)
