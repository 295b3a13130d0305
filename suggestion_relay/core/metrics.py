from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock


@dataclass
class EndpointMetric:
    total_requests: int = 0
    total_duration_ms: float = 0.0
    error_count: int = 0


@dataclass
class LindyExchangeMetric:
    total: int = 0
    failures: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    last_business_id: str | None = None


class InMemoryRequestMetrics:
    """Per-route HTTP metrics plus counters for every Lindy exchange.

    Routes are keyed by their template (``/api/businesses/{business_id}/...``)
    so one key covers all businesses. Lindy exchanges are keyed by direction
    and question, fed from the request log writes.
    """

    def __init__(self) -> None:
        self._metrics: dict[tuple[str, str], EndpointMetric] = {}
        self._lindy: dict[tuple[str, str], LindyExchangeMetric] = {}
        self._lock = Lock()

    def observe(self, endpoint: str, method: str, status_code: int, duration_ms: float) -> None:
        key = (endpoint, method)
        with self._lock:
            metric = self._metrics.setdefault(key, EndpointMetric())
            metric.total_requests += 1
            metric.total_duration_ms += duration_ms
            if status_code >= 400:
                metric.error_count += 1

    def observe_lindy(
        self,
        *,
        direction: str,
        question_id: str | None,
        success: bool,
        status_code: int | None,
        business_id: str | None = None,
    ) -> None:
        key = (direction, question_id or "-")
        status_label = str(status_code) if status_code is not None else "no_response"
        with self._lock:
            metric = self._lindy.setdefault(key, LindyExchangeMetric())
            metric.total += 1
            if not success:
                metric.failures += 1
            metric.by_status[status_label] = metric.by_status.get(status_label, 0) + 1
            if business_id:
                metric.last_business_id = business_id

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            result: dict[str, dict[str, float | int]] = {}
            for (endpoint, method), metric in self._metrics.items():
                avg = metric.total_duration_ms / metric.total_requests if metric.total_requests else 0.0
                result[f"{method} {endpoint}"] = {
                    "total_requests": metric.total_requests,
                    "total_duration_ms": round(metric.total_duration_ms, 2),
                    "avg_duration_ms": round(avg, 2),
                    "error_count": metric.error_count,
                }
            return result

    def snapshot_lindy(self) -> dict[str, dict]:
        with self._lock:
            return {
                f"{direction} {question_id}": {
                    "total": metric.total,
                    "failures": metric.failures,
                    "by_status": dict(metric.by_status),
                    "last_business_id": metric.last_business_id,
                }
                for (direction, question_id), metric in self._lindy.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._lindy.clear()


request_metrics = InMemoryRequestMetrics()
