"""Cache tiers: local, remote, and the tiered composite."""

from tieredcache.cache.base import Cache
from tieredcache.cache.local import LocalCache, LocalCacheConfig, ShardedTTLStore
from tieredcache.cache.pool import ClusterPool, get_shared_pool, reset_shared_pool
from tieredcache.cache.remote import RemoteCache, RemoteCacheConfig
from tieredcache.cache.tiered import TieredCache, TieredCacheConfig

__all__ = [
    "Cache",
    "ClusterPool",
    "LocalCache",
    "LocalCacheConfig",
    "RemoteCache",
    "RemoteCacheConfig",
    "ShardedTTLStore",
    "TieredCache",
    "TieredCacheConfig",
    "get_shared_pool",
    "reset_shared_pool",
]
