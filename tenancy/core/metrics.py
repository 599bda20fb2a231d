# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Metrics — in-process counters, gauges and latency windows.

Names in use:
  counters    tenant_provisioned, tenant_provision_failed, tenant_deleted,
              tenant_reconciliation_required, resolver_fallback,
              schema_strategy:<applier>
  gauges      tenant_pools
  latencies   provision_latency, schema_apply:<applier>, http_latency (ms)

Exposed as JSON on /health and /api/metrics.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterator


class Metrics:
    def __init__(self, window: int = 1000):
        self._window = window
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._latencies: Dict[str, Deque[float]] = {}
        self._started = time.time()

    def inc(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        """Record one latency sample; only the newest ``window`` are kept."""
        samples = self._latencies.get(name)
        if samples is None:
            samples = self._latencies[name] = deque(maxlen=self._window)
        samples.append(value)

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Observe the wall time of the block in milliseconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - start) * 1000)

    @staticmethod
    def _summary(samples: Deque[float]) -> Dict[str, Any]:
        ordered = sorted(samples)
        return {
            "count": len(ordered),
            "avg": round(sum(ordered) / len(ordered), 2),
            "p95": round(ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))], 2),
            "max": round(ordered[-1], 2),
            "min": round(ordered[0], 2),
        }

    def snapshot(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "uptime_seconds": round(time.time() - self._started, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }
        for name, samples in self._latencies.items():
            if samples:
                result[f"histogram_{name}"] = self._summary(samples)
        return result

    def reset(self) -> None:
        """Clear everything (tests only)."""
        self._counters.clear()
        self._gauges.clear()
        self._latencies.clear()


platform_metrics = Metrics()
