import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Dict, Any, Optional
from ..analytics import AnalyticsSource, parse_driver_id
from ..benchmark import check_parity, compare_strategies
from ..cache import CachedAnalyticsSource
from ..config import config
from ..errors import AnalyticsError, DriverNotFound, InvalidDriverId
from ..monitoring import MetricsCollector, PerformanceLog
from ..schemas import BenchmarkComparison, CacheClearResponse, DriverAnalytics, StrategyComparisonResponse
from .dependencies import (
    get_analytics_source,
    get_cached_source,
    get_fan_out_source,
    get_metrics,
    get_single_query_source,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drivers", tags=["trip-analytics"])

INTERNAL_ERROR = "Internal server error"

def _raise_http(e: AnalyticsError, driver_id: str):
    """Translate an analytics failure into an HTTP error."""
    if isinstance(e, InvalidDriverId):
        raise HTTPException(status_code=400, detail=str(e)) from e
    if isinstance(e, DriverNotFound):
        raise HTTPException(status_code=404, detail="Driver not found") from e
    logger.exception("Analytics failed for driver %s", driver_id)
    raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from e

# Static paths first so they are not captured by /{driver_id}/...

@router.get("/performance/report")
def get_performance_report(metrics: MetricsCollector = Depends(get_metrics)) -> Dict[str, Any]:
    """Performance report comparing the cached and single-query paths."""
    return metrics.performance_report()

@router.get("/performance/{endpoint}")
def get_endpoint_performance(
    endpoint: str,
    metrics: MetricsCollector = Depends(get_metrics)
) -> Dict[str, Any]:
    """Metrics for one endpoint: cached-analytics, fan-out or single-query."""
    return metrics.get_endpoint_metrics(endpoint).summary()

@router.get("/performance/{endpoint}/history", response_model=List[PerformanceLog])
def get_endpoint_history(
    endpoint: str,
    limit: int = Query(100, ge=1, le=1000, description="Number of history entries to return"),
    metrics: MetricsCollector = Depends(get_metrics)
) -> List[PerformanceLog]:
    """Recent request log for one endpoint."""
    return metrics.get_history(endpoint, limit)

@router.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(
    pattern: Optional[str] = Query(None, description='Key pattern, e.g. "driver:*"'),
    cached: Optional[CachedAnalyticsSource] = Depends(get_cached_source)
) -> CacheClearResponse:
    """Clear cached analytics entries matching a pattern."""
    if cached is None:
        return CacheClearResponse(message="Cache disabled", deleted=0)
    pattern = pattern or f"{cached.key_prefix}:*"
    deleted = await cached.clear(pattern)
    return CacheClearResponse(message=f"Cache cleared for pattern: {pattern}", deleted=deleted)

@router.get("/{driver_id}/analytics", response_model=DriverAnalytics)
async def get_driver_analytics(
    driver_id: str,
    source: AnalyticsSource = Depends(get_analytics_source)
) -> DriverAnalytics:
    """Driver analytics via the fan-out strategy, served from cache when fresh."""
    try:
        return await source.get_driver_analytics(driver_id)
    except AnalyticsError as e:
        _raise_http(e, driver_id)

@router.get("/{driver_id}/analytics/unoptimized", response_model=DriverAnalytics)
async def get_driver_analytics_unoptimized(
    driver_id: str,
    source: AnalyticsSource = Depends(get_single_query_source)
) -> DriverAnalytics:
    """Driver analytics via the single JOIN query. For comparison only."""
    try:
        return await source.get_driver_analytics(driver_id)
    except AnalyticsError as e:
        _raise_http(e, driver_id)

@router.get("/{driver_id}/analytics/compare", response_model=StrategyComparisonResponse)
async def compare_driver_analytics(
    driver_id: str,
    single_query: AnalyticsSource = Depends(get_single_query_source),
    fan_out: AnalyticsSource = Depends(get_fan_out_source)
) -> StrategyComparisonResponse:
    """Run both strategies uncached and report whether they agree."""
    try:
        single_result = await single_query.get_driver_analytics(driver_id)
        fan_out_result = await fan_out.get_driver_analytics(driver_id)
    except AnalyticsError as e:
        _raise_http(e, driver_id)

    parity = check_parity(single_result, fan_out_result)
    return StrategyComparisonResponse(
        single_query=single_result,
        fan_out=fan_out_result,
        parity=parity,
        consistent=parity.consistent,
    )

@router.delete("/{driver_id}/analytics/cache")
async def invalidate_driver_analytics(
    driver_id: str,
    cached: Optional[CachedAnalyticsSource] = Depends(get_cached_source)
) -> Dict[str, Any]:
    """Drop the cached analytics of one driver."""
    try:
        parsed = parse_driver_id(driver_id)
    except InvalidDriverId as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if cached is not None:
        await cached.invalidate(parsed)
    return {"driver_id": parsed, "invalidated": cached is not None}

@router.post("/{driver_id}/benchmark", response_model=BenchmarkComparison)
async def benchmark_driver_analytics(
    driver_id: str,
    total_requests: int = Query(config.benchmark_default_requests, ge=1, le=config.benchmark_max_requests,
                                description="Requests per strategy"),
    concurrency: int = Query(config.benchmark_default_concurrency, ge=1, le=100,
                             description="Concurrent requests per batch"),
    single_query: AnalyticsSource = Depends(get_single_query_source),
    fan_out: AnalyticsSource = Depends(get_fan_out_source)
) -> BenchmarkComparison:
    """Benchmark the single-query and fan-out strategies for one driver."""
    try:
        # Fail fast on unknown drivers instead of benchmarking errors.
        await fan_out.get_driver_analytics(driver_id)
        return await compare_strategies(single_query, fan_out, driver_id, total_requests, concurrency)
    except AnalyticsError as e:
        _raise_http(e, driver_id)
