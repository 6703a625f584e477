"""Pipeline metrics: structured debug log lines, optionally mirrored to StatsD."""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from statsd import StatsClient

from app.config import settings

logger = logging.getLogger("app.metrics")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_\-]+")


class MetricsReporter:
    """Counters, gauges and timings for pipeline stages.

    StatsD has no native tags, so tags are folded into the metric path in sorted key order
    (``signal_pipeline.orchestrator.stage_ms.stage_fetch``). The log payload keeps them as a dict.
    """

    def __init__(self) -> None:
        self._disabled = settings.metrics_disable
        self._namespace = settings.metrics_namespace or "signal_pipeline"
        self._backend = (settings.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(settings.metrics_sample_rate, 1.0))
        self._statsd: StatsClient | None = None
        if self._backend == "statsd" and not self._disabled:
            try:
                self._statsd = StatsClient(
                    host=settings.metrics_statsd_host,
                    port=settings.metrics_statsd_port,
                    prefix="",
                )
            except OSError as exc:
                self._report_backend_failure("statsd.init", exc)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags)

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags)

    @contextmanager
    def timer(self, metric: str, *, tags: dict[str, Any] | None = None) -> Iterator[None]:
        """Emit the wall-clock duration of the block in milliseconds, even when it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timing(metric, (time.perf_counter() - started) * 1000, tags=tags)

    def _emit(self, kind: str, metric: str, value: float, tags: dict[str, Any] | None) -> None:
        if self._disabled or value is None:
            return
        rate = 1.0 if kind == "gauge" else self._sample_rate
        if rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > rate:
            return
        name = self._qualified(metric)
        logger.debug(
            "signal_pipeline.metric",
            extra={
                "metrics": {
                    "metric": name,
                    "type": kind,
                    "value": round(float(value), 4),
                    "tags": dict(tags or {}),
                    "sample_rate": rate,
                }
            },
        )
        if self._statsd is None:
            return
        path = _with_tags(name, tags)
        try:
            if kind == "timing":
                self._statsd.timing(path, value, rate=rate)
            elif kind == "gauge":
                self._statsd.gauge(path, value)
            else:
                self._statsd.incr(path, value, rate=rate)
        except OSError as exc:
            self._report_backend_failure(path, exc)

    def _qualified(self, metric: str) -> str:
        metric = (metric or "").strip()
        if not metric:
            return self._namespace
        if metric.startswith(f"{self._namespace}."):
            return metric
        return f"{self._namespace}.{metric}"

    def _report_backend_failure(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


def _with_tags(name: str, tags: dict[str, Any] | None) -> str:
    if not tags:
        return name
    parts = [
        f"{_UNSAFE_CHARS.sub('_', str(key))}_{_UNSAFE_CHARS.sub('_', str(value))}"
        for key, value in sorted(tags.items())
    ]
    return ".".join([name, *parts])


metrics = MetricsReporter()
