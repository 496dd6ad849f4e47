"""tieredcache: an in-process cache in front of a shared Redis cluster."""

from tieredcache.cache import (
    Cache,
    ClusterPool,
    LocalCache,
    LocalCacheConfig,
    RemoteCache,
    RemoteCacheConfig,
    TieredCache,
    TieredCacheConfig,
    get_shared_pool,
)
from tieredcache.encoding import CacheEncoder, JsonEncoder, PickleEncoder
from tieredcache.exceptions import (
    CacheAuthError,
    CacheConnectionError,
    CacheMissError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    RemoteCommandError,
    TieredCacheError,
)
from tieredcache.observability.metrics import (
    CacheMetrics,
    InMemoryCacheMetrics,
    NullCacheMetrics,
    PrometheusCacheMetrics,
)

__version__ = "1.0.0"

__all__ = [
    "Cache",
    "CacheAuthError",
    "CacheConnectionError",
    "CacheEncoder",
    "CacheMetrics",
    "CacheMissError",
    "ClusterPool",
    "ConfigurationError",
    "DecodeError",
    "EncodeError",
    "InMemoryCacheMetrics",
    "JsonEncoder",
    "LocalCache",
    "LocalCacheConfig",
    "NullCacheMetrics",
    "PickleEncoder",
    "PrometheusCacheMetrics",
    "RemoteCache",
    "RemoteCacheConfig",
    "RemoteCommandError",
    "TieredCache",
    "TieredCacheConfig",
    "TieredCacheError",
    "get_shared_pool",
]
