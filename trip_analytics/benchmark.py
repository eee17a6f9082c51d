import asyncio
import logging
import math
import time
from decimal import Decimal
from typing import List

from .analytics import AnalyticsSource, parse_driver_id
from .errors import AnalyticsError
from .schemas import BenchmarkComparison, BenchmarkResult, DriverAnalytics, ParityReport

logger = logging.getLogger(__name__)

RATING_TOLERANCE = Decimal("0.01")

def percentile(sorted_times: List[float], pct: float) -> float:
    """Nearest-rank percentile of an ascending list."""
    if not sorted_times:
        return 0.0
    index = math.ceil(pct * len(sorted_times) / 100) - 1
    return sorted_times[max(0, index)]

async def benchmark_source(source: AnalyticsSource, driver_id, total_requests: int = 100,
                           concurrency: int = 10) -> BenchmarkResult:
    """Call ``source`` ``total_requests`` times, ``concurrency`` at a time."""
    driver_id = parse_driver_id(driver_id)
    concurrency = max(1, concurrency)
    response_times: List[float] = []
    failed = 0

    async def one_request():
        nonlocal failed
        started = time.perf_counter()
        try:
            await source.get_driver_analytics(driver_id)
        except AnalyticsError as e:
            failed += 1
            logger.debug("Benchmark request on %s failed: %s", source.name, e)
            return
        response_times.append((time.perf_counter() - started) * 1000)

    logger.info("Benchmarking %s: %d requests, concurrency %d", source.name, total_requests, concurrency)
    started = time.perf_counter()
    for offset in range(0, total_requests, concurrency):
        batch = min(concurrency, total_requests - offset)
        await asyncio.gather(*(one_request() for _ in range(batch)))
    total_time = (time.perf_counter() - started) * 1000

    ordered = sorted(response_times)
    successful = len(ordered)
    result = BenchmarkResult(
        endpoint=source.name,
        total_requests=total_requests,
        successful_requests=successful,
        failed_requests=failed,
        average_response_time=sum(ordered) / successful if successful else 0.0,
        min_response_time=ordered[0] if ordered else 0.0,
        max_response_time=ordered[-1] if ordered else 0.0,
        p95_response_time=percentile(ordered, 95),
        p99_response_time=percentile(ordered, 99),
        requests_per_second=successful / total_time * 1000 if total_time > 0 else 0.0,
        total_time=total_time,
    )
    logger.info("%s: avg %.2fms, p95 %.2fms, %.1f req/s, %d failed", result.endpoint,
                result.average_response_time, result.p95_response_time, result.requests_per_second, failed)
    return result

async def compare_strategies(single_query: AnalyticsSource, fan_out: AnalyticsSource, driver_id,
                             total_requests: int = 100, concurrency: int = 10) -> BenchmarkComparison:
    """Benchmark both strategies back to back for the same driver."""
    driver_id = parse_driver_id(driver_id)
    single_result = await benchmark_source(single_query, driver_id, total_requests, concurrency)
    fan_out_result = await benchmark_source(fan_out, driver_id, total_requests, concurrency)

    comparison = BenchmarkComparison(driver_id=driver_id, single_query=single_result, fan_out=fan_out_result)
    if single_result.successful_requests and fan_out_result.successful_requests and fan_out_result.average_response_time > 0:
        baseline = single_result.average_response_time
        comparison.response_time_improvement = round((baseline - fan_out_result.average_response_time) / baseline * 100, 2) if baseline else None
        comparison.speedup = round(baseline / fan_out_result.average_response_time, 2)
    return comparison

def check_parity(first: DriverAnalytics, second: DriverAnalytics) -> ParityReport:
    """Compare two results for the same driver produced by different strategies."""
    return ParityReport(
        total_trips_match=first.total_trips == second.total_trips,
        total_earnings_match=first.total_earnings == second.total_earnings,
        average_rating_match=abs(first.average_rating - second.average_rating) <= RATING_TOLERANCE,
        trip_ids_match=[trip.trip_id for trip in first.trips] == [trip.trip_id for trip in second.trips],
    )
