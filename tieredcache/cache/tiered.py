"""
Two-tier cache orchestration.

:class:`TieredCache` composes one local-like and one remote-like
:class:`~tieredcache.cache.base.Cache`:

* Reads try the local tier first and fall back to the remote tier on any
  local failure.  The remote outcome is final and a remote hit is *not*
  copied back into the local tier.
* Writes, deletes and purges go to the local tier first and reach the
  remote tier only if the local step succeeded.  A remote failure after a
  local success is raised as-is; the local change is not rolled back, so
  after any write-path error the state of both tiers is indeterminate.
"""

import logging
from typing import Any, Optional

from opentelemetry import trace
from prometheus_client import CollectorRegistry
from pydantic import BaseModel, Field

from tieredcache.cache.base import Cache
from tieredcache.cache.local import LocalCache, LocalCacheConfig
from tieredcache.cache.pool import ClusterPool
from tieredcache.cache.remote import RemoteCache, RemoteCacheConfig
from tieredcache.config import Settings, get_settings
from tieredcache.encoding import CacheEncoder, PickleEncoder
from tieredcache.observability.metrics import CacheMetrics, PrometheusCacheMetrics, guard_metrics
from tieredcache.observability.tracing import cache_span, get_tracer, tag_span

logger = logging.getLogger(__name__)


class TieredCacheConfig(BaseModel):
    """Configuration for a :class:`TieredCache` and both of its tiers.

    ``metrics_client`` and ``metrics_cache_name`` label the Prometheus
    recorders :meth:`TieredCache.from_config` builds when none are passed.
    """

    remote: RemoteCacheConfig = Field(default_factory=RemoteCacheConfig)
    local: LocalCacheConfig = Field(default_factory=LocalCacheConfig)
    tracing_enabled: bool = True
    metrics_client: str = "tieredcache"
    metrics_cache_name: str = "default"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TieredCacheConfig":
        """Build a config from the ``remote``, ``local``, ``tiered`` and ``metrics`` settings."""
        s = settings if settings is not None else get_settings()
        return cls(
            remote=RemoteCacheConfig.from_settings(s.remote),
            local=LocalCacheConfig.from_settings(s.local),
            tracing_enabled=s.tiered.tracing_enabled,
            metrics_client=s.metrics.client,
            metrics_cache_name=s.metrics.cache_name,
        )


class TieredCache:
    """Local-first cache with a shared remote tier behind it.

    Args:
        local: The fast tier, consulted first.
        remote: The slow tier, consulted on local failure.
        metrics: Recorder for the tiered outcome of each call,
            independent of the tiers' own recorders.
        tracing_enabled: Whether reads open tracing spans.
        tracer: OpenTelemetry tracer; the global one when omitted.
    """

    def __init__(
        self,
        local: Cache,
        remote: Cache,
        metrics: Optional[CacheMetrics] = None,
        tracing_enabled: bool = True,
        tracer: Optional[trace.Tracer] = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self._metrics = guard_metrics(metrics)
        self._tracer = get_tracer(tracer)
        self.tracing_enabled = tracing_enabled

    @classmethod
    def from_config(
        cls,
        config: Optional[TieredCacheConfig] = None,
        encoder: Optional[CacheEncoder] = None,
        metrics: Optional[CacheMetrics] = None,
        local_metrics: Optional[CacheMetrics] = None,
        remote_metrics: Optional[CacheMetrics] = None,
        pool: Optional[ClusterPool] = None,
        tracer: Optional[trace.Tracer] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> "TieredCache":
        """Build the remote tier, then the local tier, then the composite.

        Both tiers share one encoder so each can read what the other
        wrote.  Each recorder left as ``None`` becomes a
        :class:`PrometheusCacheMetrics` on *registry* (the default process
        registry when omitted), labelled ``config.metrics_client`` and
        ``config.metrics_cache_name`` with a ``.local`` or ``.remote``
        suffix for the tiers.

        Raises:
            CacheConnectionError: If the remote topology refresh fails.
            CacheAuthError: If the remote auth token is rejected.
            ConfigurationError: If the local shard count is invalid.
        """
        if config is None:
            config = TieredCacheConfig.from_settings()
        if encoder is None:
            encoder = PickleEncoder()
        client, name = config.metrics_client, config.metrics_cache_name
        if metrics is None:
            metrics = PrometheusCacheMetrics(client, name, registry=registry)
        if local_metrics is None:
            local_metrics = PrometheusCacheMetrics(client, f"{name}.local", registry=registry)
        if remote_metrics is None:
            remote_metrics = PrometheusCacheMetrics(client, f"{name}.remote", registry=registry)
        remote = RemoteCache.from_config(
            config.remote, encoder=encoder, metrics=remote_metrics, pool=pool, tracer=tracer,
        )
        local = LocalCache(config.local, encoder=encoder, metrics=local_metrics, tracer=tracer)
        return cls(
            local,
            remote,
            metrics=metrics,
            tracing_enabled=config.tracing_enabled,
            tracer=tracer,
        )

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics.inner

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_bytes(self, key: str) -> bytes:
        """Return bytes from the local tier, else from the remote tier.

        Raises:
            Whatever the remote tier raises when both tiers fail.
        """
        with cache_span(
            self._tracer, "tiered-cache-get-bytes", self.tracing_enabled, {"key": key},
        ) as span:
            try:
                data = self.local.get_bytes(key)
            except Exception as e:
                logger.debug(
                    "Local tier read failed, falling back to remote",
                    extra={"cache_key": key, "error": str(e)},
                )
            else:
                tag_span(span, "result", "local")
                return data

            try:
                data = self.remote.get_bytes(key)
            except Exception:
                tag_span(span, "result", "miss")
                raise
            tag_span(span, "result", "remote")
            return data

    def get(self, key: str, target: Optional[Any] = None) -> Any:
        """Return the decoded value from the local tier, else the remote tier.

        Records exactly one hit or miss on this cache's metrics.

        Raises:
            Whatever the remote tier raises when both tiers fail.
        """
        with cache_span(
            self._tracer, "tiered-cache-get", self.tracing_enabled, {"key": key},
        ) as span:
            try:
                value = self.local.get(key, target)
            except Exception as e:
                logger.debug(
                    "Local tier read failed, falling back to remote",
                    extra={"cache_key": key, "error": str(e)},
                )
            else:
                self._metrics.hit()
                tag_span(span, "result", "local")
                return value

            try:
                value = self.remote.get(key, target)
            except Exception:
                self._metrics.miss()
                tag_span(span, "result", "miss")
                raise
            self._metrics.hit()
            tag_span(span, "result", "remote")
            return value

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_bytes(self, key: str, value: bytes) -> None:
        """Write *value* to the local tier, then to the remote tier."""
        self.local.set_bytes(key, value)
        self.remote.set_bytes(key, value)

    def set(self, key: str, value: Any) -> None:
        """Encode and write *value* to the local tier, then the remote tier.

        Raises:
            The local tier's error if the local write failed (the remote
            tier is untouched), else the remote tier's error.
        """
        try:
            self.local.set(key, value)
            self.remote.set(key, value)
        except Exception:
            self._metrics.set_collision()
            raise
        self._metrics.set()

    def delete(self, key: str) -> None:
        """Delete *key* locally, then remotely.

        The remote tier is only reached when the local delete succeeded,
        so a key held only remotely is not removed.
        """
        try:
            self.local.delete(key)
            self.remote.delete(key)
        except Exception:
            self._metrics.delete_miss()
            raise
        self._metrics.delete_hit()

    def purge(self) -> None:
        """Purge the local tier, then the remote tier."""
        try:
            self.local.purge()
            self.remote.purge()
        except Exception:
            self._metrics.purge_miss()
            raise
        self._metrics.purge_hit()
        logger.info("Tiered cache purged")

    def close(self) -> None:
        """Close the remote tier."""
        self.remote.close()
