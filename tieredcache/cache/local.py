"""
In-process cache tier for tieredcache.

:class:`LocalCache` adapts :class:`ShardedTTLStore` -- a byte store made of
power-of-two ``cachetools.TTLCache`` shards, one lock per shard -- to the
:class:`~tieredcache.cache.base.Cache` contract.  Entries expire after the
configured TTL; expired entries are swept from a shard whenever the
eviction interval has elapsed since that shard's last sweep.
"""

import logging
import math
import threading
import time
from typing import Any, Callable, List, Optional

from cachetools import TTLCache
from opentelemetry import trace
from pydantic import BaseModel, Field

from tieredcache.config import LocalSettings, get_settings
from tieredcache.encoding import CacheEncoder, PickleEncoder
from tieredcache.exceptions import CacheMissError, ConfigurationError
from tieredcache.observability.metrics import CacheMetrics, guard_metrics
from tieredcache.observability.tracing import cache_span, get_tracer, tag_span

logger = logging.getLogger(__name__)

DEFAULT_SHARDS = 256


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class LocalCacheConfig(BaseModel):
    """Configuration for a :class:`LocalCache`.

    Attributes:
        eviction_interval_seconds: How often each shard sweeps out
            expired entries.
        ttl_seconds: Entry lifetime.  0 uses the eviction interval as
            the lifetime.
        shards: Number of shards; 0 lets the engine decide, anything
            else must be a power of two.
        max_entries: Capacity across all shards; 0 means unbounded.  Split
            evenly between shards (rounding down), so it must be at least
            the shard count.
        tracing_enabled: Whether operations open tracing spans.
    """

    eviction_interval_seconds: float = Field(default=5.0, gt=0)
    ttl_seconds: float = Field(default=3600.0, ge=0)
    shards: int = Field(default=0, ge=0)
    max_entries: int = Field(default=0, ge=0)
    tracing_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[LocalSettings] = None) -> "LocalCacheConfig":
        """Build a config from the ``local`` section of the settings."""
        s = settings if settings is not None else get_settings().local
        return cls(
            eviction_interval_seconds=s.eviction_interval_seconds,
            ttl_seconds=s.ttl_seconds,
            shards=s.shards,
            max_entries=s.max_entries,
            tracing_enabled=s.tracing_enabled,
        )


def _is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def _check_capacity(max_entries: int, shards: int) -> None:
    if 0 < max_entries < shards:
        raise ConfigurationError(
            f"max_entries must be 0 or at least the shard count ({shards}) - {max_entries} is invalid"
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ShardedTTLStore:
    """Thread-safe byte store split across TTL-bounded shards.

    Behaves like a mapping of ``str`` to ``bytes``: ``get`` and
    ``delete`` raise ``KeyError`` for absent or expired keys.

    Args:
        shards: Shard count, a power of two.
        ttl_seconds: Entry lifetime.
        eviction_interval_seconds: Minimum time between expiry sweeps of
            a shard.
        max_entries: Upper bound on total entries; 0 means unbounded.
            Each shard holds at most ``max_entries // shards``.
        timer: Clock used for expiry (injectable for tests).
    """

    def __init__(
        self,
        shards: int,
        ttl_seconds: float,
        eviction_interval_seconds: float,
        max_entries: int = 0,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if not _is_power_of_two(shards):
            raise ConfigurationError(f"shards must be power of 2 - {shards} is invalid")
        _check_capacity(max_entries, shards)
        per_shard = math.inf if max_entries <= 0 else max_entries // shards
        self._timer = timer
        self._eviction_interval = eviction_interval_seconds
        self._mask = shards - 1
        self._shards: List[TTLCache] = [
            TTLCache(maxsize=per_shard, ttl=ttl_seconds, timer=timer)
            for _ in range(shards)
        ]
        self._locks = [threading.Lock() for _ in range(shards)]
        now = timer()
        self._last_sweep = [now] * shards

    @property
    def shard_count(self) -> int:
        return len(self._shards)

    def _index(self, key: str) -> int:
        return hash(key) & self._mask

    def _sweep(self, index: int) -> None:
        # Caller holds the shard lock
        now = self._timer()
        if now - self._last_sweep[index] >= self._eviction_interval:
            self._shards[index].expire()
            self._last_sweep[index] = now

    def get(self, key: str) -> bytes:
        index = self._index(key)
        with self._locks[index]:
            self._sweep(index)
            return self._shards[index][key]

    def set(self, key: str, value: bytes) -> None:
        index = self._index(key)
        data = bytes(value)
        with self._locks[index]:
            self._sweep(index)
            self._shards[index][key] = data

    def delete(self, key: str) -> None:
        index = self._index(key)
        with self._locks[index]:
            del self._shards[index][key]

    def reset(self) -> None:
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                shard.clear()

    def __len__(self) -> int:
        total = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                shard.expire()
                total += len(shard)
        return total


# ---------------------------------------------------------------------------
# LocalCache
# ---------------------------------------------------------------------------


class LocalCache:
    """In-process cache tier.

    Args:
        config: Tier configuration; built from settings when omitted.
        encoder: Value encoder; :class:`PickleEncoder` when omitted.
        metrics: Outcome recorder; a no-op when omitted.
        tracer: OpenTelemetry tracer; the global one when omitted.
        timer: Clock for entry expiry (injectable for tests).

    Raises:
        ConfigurationError: If ``config.shards`` is nonzero and not a
            power of two, or ``config.max_entries`` is nonzero and below
            the shard count.  Checked before the engine is built.
    """

    def __init__(
        self,
        config: Optional[LocalCacheConfig] = None,
        encoder: Optional[CacheEncoder] = None,
        metrics: Optional[CacheMetrics] = None,
        tracer: Optional[trace.Tracer] = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if config is None:
            config = LocalCacheConfig.from_settings()
        if config.shards != 0 and not _is_power_of_two(config.shards):
            raise ConfigurationError(
                f"shards must be power of 2 - {config.shards} is invalid"
            )
        _check_capacity(config.max_entries, config.shards or DEFAULT_SHARDS)
        self._config = config
        self._encoder = encoder if encoder is not None else PickleEncoder()
        self._metrics = guard_metrics(metrics)
        self._tracer = get_tracer(tracer)
        self.tracing_enabled = config.tracing_enabled

        ttl = config.ttl_seconds or config.eviction_interval_seconds
        self._engine = ShardedTTLStore(
            shards=config.shards or DEFAULT_SHARDS,
            ttl_seconds=ttl,
            eviction_interval_seconds=config.eviction_interval_seconds,
            max_entries=config.max_entries,
            timer=timer,
        )
        logger.info(
            "LocalCache initialised",
            extra={"shards": self._engine.shard_count, "ttl_seconds": ttl},
        )

    @property
    def engine(self) -> ShardedTTLStore:
        """The underlying byte store."""
        return self._engine

    @property
    def encoder(self) -> CacheEncoder:
        return self._encoder

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics.inner

    def get_bytes(self, key: str) -> bytes:
        """Return the bytes stored at *key*.

        Raises:
            CacheMissError: If the key is absent or expired.
        """
        with cache_span(
            self._tracer, "local-cache-get-bytes", self.tracing_enabled,
            {"command": "GET", "key": key},
        ) as span:
            try:
                data = self._engine.get(key)
            except KeyError:
                tag_span(span, "result", "miss")
                raise CacheMissError(key) from None
            tag_span(span, "result", "hit")
            return data

    def get(self, key: str, target: Optional[Any] = None) -> Any:
        """Return the decoded value stored at *key*.

        Records one hit, or one miss for any failure (including a
        failed decode).

        Raises:
            CacheMissError: If the key is absent or expired.
            DecodeError: If the stored bytes do not decode into *target*.
        """
        try:
            value = self._encoder.decode(self.get_bytes(key), target)
        except Exception:
            self._metrics.miss()
            raise
        self._metrics.hit()
        return value

    def set_bytes(self, key: str, value: bytes) -> None:
        """Store *value* at *key*, overwriting any previous entry."""
        with self._span_for_write("local-cache-set-bytes", "SET", key) as span:
            self._engine.set(key, value)
            tag_span(span, "result", "set")

    def set(self, key: str, value: Any) -> None:
        """Encode *value* and store it at *key*.

        Raises:
            EncodeError: If the encoder rejects *value*.
        """
        try:
            data = self._encoder.encode(value)
        except Exception:
            self._metrics.set_collision()
            raise
        self._metrics.set()
        self.set_bytes(key, data)

    def delete(self, key: str) -> None:
        """Remove *key*.

        Raises:
            CacheMissError: If the key was not present.
        """
        with self._span_for_write("local-cache-delete", "DEL", key) as span:
            try:
                self._engine.delete(key)
            except KeyError:
                self._metrics.delete_miss()
                tag_span(span, "result", "miss")
                raise CacheMissError(key) from None
            except Exception:
                self._metrics.delete_miss()
                tag_span(span, "result", "fail")
                raise
            self._metrics.delete_hit()
            tag_span(span, "result", "delete")
        logger.debug("Local cache entry deleted", extra={"cache_key": key})

    def purge(self) -> None:
        """Remove every entry from the engine."""
        with cache_span(
            self._tracer, "local-cache-purge", self.tracing_enabled,
            {"command": "RESET"},
        ) as span:
            try:
                self._engine.reset()
            except Exception:
                self._metrics.purge_miss()
                tag_span(span, "result", "fail")
                raise
            self._metrics.purge_hit()
            tag_span(span, "result", "purge")
        logger.info("Local cache purged")

    def close(self) -> None:
        """Nothing to release; entries stay readable until the cache is dropped."""
        logger.debug("LocalCache closed")

    def _span_for_write(self, name: str, command: str, key: str) -> Any:
        return cache_span(
            self._tracer, name, self.tracing_enabled,
            {"command": command, "key": key},
        )
