"""Request metrics for analytics sources.

A ``MetricsCollector`` is handed to each source as its observer and called
once per operation. State lives on the collector instance, one per app.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional
from pydantic import BaseModel

logger = logging.getLogger(__name__)

TREND_THRESHOLD = 0.1

class EndpointMetrics(BaseModel):
    endpoint: str
    total_requests: int = 0
    average_response_time: float = 0.0
    min_response_time: float = 0.0
    max_response_time: float = 0.0
    slow_request_count: int = 0
    error_count: int = 0
    cache_hits: int = 0
    last_request_time: Optional[str] = None
    performance_trend: str = "stable"

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.total_requests if self.total_requests else 0.0

    @property
    def error_rate(self) -> float:
        return self.error_count / self.total_requests if self.total_requests else 0.0

    @property
    def slow_rate(self) -> float:
        return self.slow_request_count / self.total_requests if self.total_requests else 0.0

    def summary(self) -> dict:
        data = self.model_dump()
        data["cache_hit_rate"] = round(self.cache_hit_rate, 4)
        data["cache_miss_rate"] = round(1 - self.cache_hit_rate, 4) if self.total_requests else 0.0
        data["error_rate"] = round(self.error_rate, 4)
        return data

class PerformanceLog(BaseModel):
    timestamp: str
    endpoint: str
    driver_id: Optional[int] = None
    response_time_ms: float
    performance_category: str
    status: str
    is_cached: bool = False
    error: Optional[str] = None

def categorize_performance(response_time_ms: float) -> str:
    """Bucket a response time into a performance category."""
    if response_time_ms > 5000:
        return "CRITICAL"
    if response_time_ms > 2000:
        return "POOR"
    if response_time_ms > 1000:
        return "SLOW"
    if response_time_ms > 500:
        return "MODERATE"
    if response_time_ms > 200:
        return "GOOD"
    return "EXCELLENT"

def performance_trend(metrics: EndpointMetrics, response_time_ms: float) -> str:
    if metrics.total_requests < 2 or metrics.average_response_time <= 0:
        return "stable"
    change = abs(response_time_ms - metrics.average_response_time) / metrics.average_response_time
    if change < TREND_THRESHOLD:
        return "stable"
    return "improving" if response_time_ms < metrics.average_response_time else "degrading"

def performance_score(metrics: EndpointMetrics) -> int:
    """Score an endpoint 0-100 from latency, error rate and slow request rate."""
    score = 100.0
    avg = metrics.average_response_time
    if avg > 5000:
        score -= 40
    elif avg > 2000:
        score -= 25
    elif avg > 1000:
        score -= 15
    elif avg > 500:
        score -= 5

    if metrics.error_count:
        score -= min(30, metrics.error_rate * 100)
    if metrics.slow_request_count:
        score -= min(20, metrics.slow_rate * 100)
    if metrics.cache_hit_rate > 0.8:
        score += 10

    return max(0, min(100, round(score)))

def recommendations(metrics: EndpointMetrics) -> List[str]:
    result = []
    avg = metrics.average_response_time
    if avg > 2000:
        result.append("CRITICAL: Response time is extremely slow. Consider query optimization, indexing, or caching.")
    elif avg > 1000:
        result.append("HIGH: Response time is slow. Review queries and consider adding indexes.")
    elif avg > 500:
        result.append("MEDIUM: Response time could be improved. Consider query optimization or caching.")

    if metrics.error_count:
        result.append("Review error logs for failing requests.")
    if metrics.total_requests and metrics.slow_rate > 0.1:
        result.append("More than 10% of requests are slow.")
    if metrics.endpoint == "single-query" and avg > 1000:
        result.append("Single-query path is slow. Prefer the fan-out path with caching.")
    if metrics.endpoint == "cached-analytics" and metrics.total_requests and metrics.cache_hit_rate < 0.5:
        result.append("Cache hit rate is low. Review TTL and invalidation.")

    if not result:
        result.append("Performance is within acceptable limits. Continue monitoring.")
    return result

class MetricsCollector:
    """Per-endpoint request metrics with a bounded request history."""

    def __init__(self, history_size: int = 1000, slow_request_ms: float = 1000):
        self.history_size = history_size
        self.slow_request_ms = slow_request_ms
        self._metrics: Dict[str, EndpointMetrics] = {}
        self._history: Dict[str, Deque[PerformanceLog]] = {}

    def record(self, endpoint: str, response_time_ms: float, driver_id: Optional[int] = None,
               is_error: bool = False, is_cached: bool = False, error: Optional[str] = None) -> None:
        """Record one completed operation."""
        now = datetime.now(timezone.utc).isoformat()
        current = self.get_endpoint_metrics(endpoint)
        count = current.total_requests

        self._metrics[endpoint] = EndpointMetrics(
            endpoint=endpoint,
            total_requests=count + 1,
            average_response_time=(current.average_response_time * count + response_time_ms) / (count + 1),
            min_response_time=min(current.min_response_time, response_time_ms) if count else response_time_ms,
            max_response_time=max(current.max_response_time, response_time_ms),
            slow_request_count=current.slow_request_count + (1 if response_time_ms > self.slow_request_ms else 0),
            error_count=current.error_count + (1 if is_error else 0),
            cache_hits=current.cache_hits + (1 if is_cached else 0),
            last_request_time=now,
            performance_trend=performance_trend(current, response_time_ms),
        )

        history = self._history.setdefault(endpoint, deque(maxlen=self.history_size))
        history.append(PerformanceLog(
            timestamp=now,
            endpoint=endpoint,
            driver_id=driver_id,
            response_time_ms=response_time_ms,
            performance_category=categorize_performance(response_time_ms),
            status="error" if is_error else "success",
            is_cached=is_cached,
            error=error,
        ))

        if response_time_ms > self.slow_request_ms:
            logger.warning("Slow request on %s: %.2fms (driver %s)", endpoint, response_time_ms, driver_id)

    def get_endpoint_metrics(self, endpoint: str) -> EndpointMetrics:
        return self._metrics.get(endpoint) or EndpointMetrics(endpoint=endpoint)

    def get_history(self, endpoint: str, limit: int = 100) -> List[PerformanceLog]:
        history = list(self._history.get(endpoint, ()))
        return history[-limit:] if limit > 0 else []

    def endpoints(self) -> List[str]:
        return sorted(self._metrics)

    def reset(self) -> None:
        self._metrics.clear()
        self._history.clear()

    def performance_report(self, endpoints=("cached-analytics", "fan-out", "single-query")) -> dict:
        """Per-endpoint scores and recommendations plus a cached vs single-query comparison."""
        report_endpoints = {}
        for endpoint in endpoints:
            metrics = self.get_endpoint_metrics(endpoint)
            entry = metrics.summary()
            entry["performance_score"] = performance_score(metrics)
            entry["recommendations"] = recommendations(metrics)
            report_endpoints[endpoint] = entry

        all_metrics = [self.get_endpoint_metrics(endpoint) for endpoint in endpoints]
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": report_endpoints,
            "summary": {
                "total_endpoints": len(endpoints),
                "critical_issues": sum(1 for m in all_metrics if m.average_response_time > 2000),
                "optimization_needed": any(m.average_response_time > 1000 for m in all_metrics),
                "performance_comparison": compare_endpoints(
                    self.get_endpoint_metrics("cached-analytics"),
                    self.get_endpoint_metrics("single-query"),
                ),
            },
        }

def compare_endpoints(optimized: EndpointMetrics, baseline: EndpointMetrics) -> dict:
    if optimized.total_requests == 0 or baseline.total_requests == 0:
        return {"message": "Insufficient data for comparison"}
    if baseline.average_response_time <= 0:
        return {"message": "Baseline has no measurable response time"}

    improvement = (baseline.average_response_time - optimized.average_response_time) / baseline.average_response_time * 100
    return {
        "response_time_improvement_percent": round(improvement, 2),
        "optimized_average_ms": round(optimized.average_response_time, 2),
        "baseline_average_ms": round(baseline.average_response_time, 2),
        "faster": optimized.endpoint if improvement > 0 else baseline.endpoint,
    }
