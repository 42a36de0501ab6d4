"""
Prometheus metrics for the storage engine.

Counters and histograms for:
- commits (by outcome), conflicts, retries (by reason), aborts
- commit latency
- proofs built and verifications by outcome
- corruption events (digest mismatch, missing node)

Each `StoreMetrics` instance owns a private `CollectorRegistry`, so several
engines in one process (tests, multi-store tools) never collide on metric
names. `render()` returns the text exposition for scraping or the CLI.

    m = StoreMetrics()
    with m.time_commit() as t:
        ...
        t.ok()
    m.render()
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import (CollectorRegistry, Counter, Histogram,
                               generate_latest)

_LATENCY_BUCKETS = (0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class StoreMetrics:
    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        *,
        namespace: str = "vstore",
        enabled: bool = True,
    ) -> None:
        self.enabled = enabled
        self.registry = registry if registry is not None else CollectorRegistry(auto_describe=True)
        reg = self.registry

        self.commits_total = Counter(
            "commits_total", "Commit attempts finished, by outcome", ["outcome"],
            namespace=namespace, registry=reg,
        )
        self.conflicts_total = Counter(
            "conflicts_total", "Head CAS conflicts observed by writers",
            namespace=namespace, registry=reg,
        )
        self.retries_total = Counter(
            "retries_total", "Commit retries, by reason", ["reason"],
            namespace=namespace, registry=reg,
        )
        self.aborts_total = Counter(
            "aborts_total", "Commits abandoned after the retry budget",
            namespace=namespace, registry=reg,
        )
        self.commit_duration = Histogram(
            "commit_duration_seconds", "End-to-end commit latency (seconds)",
            namespace=namespace, registry=reg, buckets=_LATENCY_BUCKETS,
        )
        self.proofs_total = Counter(
            "proofs_total", "Proofs built, by kind", ["kind"],
            namespace=namespace, registry=reg,
        )
        self.verifications_total = Counter(
            "verifications_total", "Proof verifications, by outcome", ["outcome"],
            namespace=namespace, registry=reg,
        )
        self.corruption_total = Counter(
            "corruption_total", "Nodes rejected on read", ["kind"],
            namespace=namespace, registry=reg,
        )

    # ------------------------------------------------------------------ #

    @contextmanager
    def time_commit(self) -> Iterator["_Outcome"]:
        """
        Observe commit latency and outcome. Outcome defaults to "error" unless
        the body calls `.ok()` (or sets another outcome with `.fail(...)`).
        """
        start = time.perf_counter()
        mark = _Outcome()
        try:
            yield mark
        finally:
            if self.enabled:
                self.commit_duration.observe(max(0.0, time.perf_counter() - start))
                self.commits_total.labels(mark.value).inc()

    def note_conflict(self) -> None:
        if self.enabled:
            self.conflicts_total.inc()

    def note_retry(self, reason: str) -> None:
        if self.enabled:
            self.retries_total.labels(reason).inc()

    def note_abort(self) -> None:
        if self.enabled:
            self.aborts_total.inc()

    def note_proof(self, *, inclusion: bool) -> None:
        if self.enabled:
            self.proofs_total.labels("inclusion" if inclusion else "exclusion").inc()

    def note_verification(self, ok: bool) -> None:
        if self.enabled:
            self.verifications_total.labels("ok" if ok else "invalid").inc()

    def note_corruption(self, kind: str = "digest_mismatch") -> None:
        if self.enabled:
            self.corruption_total.labels(kind).inc()

    def value(self, name: str, labels: Optional[dict] = None) -> float:
        """Current sample value (tests and CLI); 0.0 when never observed."""
        v = self.registry.get_sample_value(name, labels or {})
        return 0.0 if v is None else float(v)

    def render(self) -> bytes:
        return generate_latest(self.registry)


class _Outcome:
    __slots__ = ("value",)

    def __init__(self) -> None:
        self.value = "error"

    def ok(self) -> None:
        self.value = "ok"

    def fail(self, outcome: str = "error") -> None:
        self.value = outcome


__all__ = ["StoreMetrics"]
