"""Metrics and tracing for cache operations."""

from tieredcache.observability.metrics import (
    CacheMetrics,
    InMemoryCacheMetrics,
    NullCacheMetrics,
    PrometheusCacheMetrics,
    guard_metrics,
)
from tieredcache.observability.tracing import cache_span, tag_span

__all__ = [
    "CacheMetrics",
    "InMemoryCacheMetrics",
    "NullCacheMetrics",
    "PrometheusCacheMetrics",
    "cache_span",
    "guard_metrics",
    "tag_span",
]
