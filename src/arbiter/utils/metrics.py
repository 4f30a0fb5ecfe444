"""
In-process metrics for gateway dispatches.

Aggregates per-backend and per-model counts, tokens, latency and cost.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DispatchRecord:
    """One gateway dispatch."""

    timestamp: datetime
    backend: str
    model: str
    latency_ms: float
    ttft_ms: float
    input_tokens: int
    output_tokens: int
    cost: float
    success: bool
    error_kind: str | None = None


@dataclass
class BackendMetrics:
    """Aggregated metrics for a backend or a model."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: float = 0.0
    total_ttft_ms: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0
    errors: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    @property
    def avg_latency_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_latency_ms / self.successful_requests

    @property
    def avg_ttft_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_ttft_ms / self.successful_requests

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "success_rate": self.success_rate,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "avg_ttft_ms": round(self.avg_ttft_ms, 1),
            "total_tokens": self.total_input_tokens + self.total_output_tokens,
            "total_cost": round(self.total_cost, 6),
            "errors": dict(self.errors),
        }


class Metrics:
    """
    Thread-safe metrics collector.

    The gateway records every dispatch here; the API serves the summary.
    """

    def __init__(self, max_history: int = 10000):
        self._lock = Lock()
        self._max_history = max_history
        self._records: list[DispatchRecord] = []
        self._backend_metrics: dict[str, BackendMetrics] = defaultdict(BackendMetrics)
        self._model_metrics: dict[str, BackendMetrics] = defaultdict(BackendMetrics)
        self._start_time = _now()

    def record_completion(
        self,
        backend: str,
        model: str,
        latency_ms: float,
        ttft_ms: float,
        input_tokens: int,
        output_tokens: int,
        cost: float = 0.0,
    ) -> None:
        """Record a successful dispatch."""
        with self._lock:
            self._add_record(DispatchRecord(
                timestamp=_now(),
                backend=backend,
                model=model,
                latency_ms=latency_ms,
                ttft_ms=ttft_ms,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost=cost,
                success=True,
            ))
            for bucket in (self._backend_metrics[backend], self._model_metrics[model]):
                bucket.total_requests += 1
                bucket.successful_requests += 1
                bucket.total_latency_ms += latency_ms
                bucket.total_ttft_ms += ttft_ms
                bucket.total_input_tokens += input_tokens
                bucket.total_output_tokens += output_tokens
                bucket.total_cost += cost

    def record_error(
        self,
        backend: str,
        model: str,
        error_kind: str,
    ) -> None:
        """Record a failed dispatch."""
        with self._lock:
            self._add_record(DispatchRecord(
                timestamp=_now(),
                backend=backend,
                model=model,
                latency_ms=0.0,
                ttft_ms=0.0,
                input_tokens=0,
                output_tokens=0,
                cost=0.0,
                success=False,
                error_kind=error_kind,
            ))
            for bucket in (self._backend_metrics[backend], self._model_metrics[model]):
                bucket.total_requests += 1
                bucket.failed_requests += 1
                bucket.errors[error_kind] += 1

    def _add_record(self, record: DispatchRecord) -> None:
        self._records.append(record)
        if len(self._records) > self._max_history:
            self._records = self._records[-self._max_history:]

    def get_summary(self) -> dict[str, Any]:
        """Aggregated metrics across all backends and models."""
        with self._lock:
            total_requests = sum(b.total_requests for b in self._backend_metrics.values())
            total_successful = sum(b.successful_requests for b in self._backend_metrics.values())
            total_tokens = sum(
                b.total_input_tokens + b.total_output_tokens
                for b in self._backend_metrics.values()
            )
            total_cost = sum(b.total_cost for b in self._backend_metrics.values())
            uptime = (_now() - self._start_time).total_seconds()

            return {
                "uptime_seconds": uptime,
                "total_requests": total_requests,
                "successful_requests": total_successful,
                "failed_requests": total_requests - total_successful,
                "success_rate": total_successful / total_requests if total_requests > 0 else 0,
                "total_tokens": total_tokens,
                "total_cost": round(total_cost, 6),
                "backends": {
                    name: bucket.as_dict() for name, bucket in self._backend_metrics.items()
                },
                "models": {
                    name: bucket.as_dict() for name, bucket in self._model_metrics.items()
                },
            }

    def get_recent(self, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent dispatch records, oldest first."""
        with self._lock:
            return [
                {
                    "timestamp": r.timestamp.isoformat(),
                    "backend": r.backend,
                    "model": r.model,
                    "latency_ms": r.latency_ms,
                    "ttft_ms": r.ttft_ms,
                    "tokens": r.input_tokens + r.output_tokens,
                    "cost": r.cost,
                    "success": r.success,
                    "error": r.error_kind,
                }
                for r in self._records[-limit:]
            ]

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._records.clear()
            self._backend_metrics.clear()
            self._model_metrics.clear()
            self._start_time = _now()


# Global metrics instance
metrics = Metrics()
