from typing import Optional
from fastapi import Request
from ..analytics import AnalyticsSource
from ..cache import CachedAnalyticsSource
from ..monitoring import MetricsCollector


def get_analytics_source(request: Request) -> AnalyticsSource:
    """Cached fan-out source, or plain fan-out when caching is disabled."""
    return request.app.state.analytics_source


def get_fan_out_source(request: Request) -> AnalyticsSource:
    return request.app.state.fan_out_source


def get_single_query_source(request: Request) -> AnalyticsSource:
    return request.app.state.single_query_source


def get_cached_source(request: Request) -> Optional[CachedAnalyticsSource]:
    return getattr(request.app.state, "cached_source", None)


def get_metrics(request: Request) -> MetricsCollector:
    return request.app.state.metrics
