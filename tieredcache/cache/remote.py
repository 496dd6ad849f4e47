"""
Redis Cluster cache tier for tieredcache.

Implements the same :class:`~tieredcache.cache.base.Cache` contract as
the in-process tier so either can sit behind a
:class:`~tieredcache.cache.tiered.TieredCache`.  Every call borrows one
connection from a :class:`~tieredcache.cache.pool.ClusterPool` and
returns it before the call ends.

Redis has no pattern delete, so :meth:`RemoteCache.delete` treats the key
as a glob: it lists matching keys with ``KEYS`` and removes them in one
``MULTI``/``EXEC`` batch on the same connection.  The batch only sees the
shard that owns the pattern's slot; matching keys on other shards are
not deleted.  Give related keys a ``{hash tag}`` to keep them together.
"""

import logging
from typing import Any, List, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field

from tieredcache.cache.pool import ClusterPool, execute, get_shared_pool
from tieredcache.config import RemoteSettings, get_settings
from tieredcache.encoding import CacheEncoder, PickleEncoder
from tieredcache.exceptions import (
    CacheAuthError,
    CacheConnectionError,
    CacheMissError,
    RemoteCommandError,
    TieredCacheError,
)
from tieredcache.observability.metrics import CacheMetrics, guard_metrics
from tieredcache.observability.tracing import cache_span, get_tracer, tag_span

logger = logging.getLogger(__name__)

DELETE_COMMAND = "Pipeline:KEYS:MULTI:DEL:EXEC"


class RemoteCacheConfig(BaseModel):
    """Configuration for a :class:`RemoteCache`.

    Attributes:
        seed_nodes: ``host:port`` addresses of cluster nodes.
        auth_token: Password to authenticate with; empty for none.
        connect_timeout_seconds: Socket connect timeout.
        max_connections: Per-node connection limit.
        tracing_enabled: Whether operations open tracing spans.
    """

    seed_nodes: List[str] = Field(default_factory=lambda: ["127.0.0.1:7000"])
    auth_token: str = ""
    connect_timeout_seconds: float = Field(default=5.0, gt=0)
    max_connections: int = Field(default=10, ge=1)
    tracing_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[RemoteSettings] = None) -> "RemoteCacheConfig":
        """Build a config from the ``remote`` section of the settings."""
        s = settings if settings is not None else get_settings().remote
        return cls(
            seed_nodes=list(s.seed_nodes),
            auth_token=s.auth_token,
            connect_timeout_seconds=s.connect_timeout_seconds,
            max_connections=s.max_connections,
            tracing_enabled=s.tracing_enabled,
        )


class RemoteCache:
    """Cache tier backed by a pooled Redis cluster.

    The constructor performs no I/O; use :meth:`from_config` to refresh
    the topology and authenticate as part of construction.

    Args:
        pool: Connection pool to borrow connections from.
        encoder: Value encoder; :class:`PickleEncoder` when omitted.
        metrics: Outcome recorder; a no-op when omitted.
        tracing_enabled: Whether operations open tracing spans.
        tracer: OpenTelemetry tracer; the global one when omitted.
    """

    def __init__(
        self,
        pool: ClusterPool,
        encoder: Optional[CacheEncoder] = None,
        metrics: Optional[CacheMetrics] = None,
        tracing_enabled: bool = True,
        tracer: Optional[trace.Tracer] = None,
    ) -> None:
        self._pool = pool
        self._encoder = encoder if encoder is not None else PickleEncoder()
        self._metrics = guard_metrics(metrics)
        self._tracer = get_tracer(tracer)
        self.tracing_enabled = tracing_enabled

    @classmethod
    def from_config(
        cls,
        config: Optional[RemoteCacheConfig] = None,
        encoder: Optional[CacheEncoder] = None,
        metrics: Optional[CacheMetrics] = None,
        pool: Optional[ClusterPool] = None,
        tracer: Optional[trace.Tracer] = None,
    ) -> "RemoteCache":
        """Build a cache, refresh the cluster topology and authenticate.

        Without an explicit *pool* the process-wide shared pool is used;
        it is created from the first caller's config and reused (seed
        list and all) by every later caller.

        Raises:
            CacheConnectionError: If the topology refresh fails.  The
                built cache is attached as ``exc.cache``.
            CacheAuthError: If the auth token is rejected, whether by the
                topology refresh or the explicit ``AUTH``.  The built
                cache is attached as ``exc.cache``.
        """
        if config is None:
            config = RemoteCacheConfig.from_settings()
        if pool is None:
            pool = get_shared_pool(
                config.seed_nodes,
                connect_timeout_seconds=config.connect_timeout_seconds,
                password=config.auth_token,
                max_connections=config.max_connections,
            )
        cache = cls(
            pool,
            encoder=encoder,
            metrics=metrics,
            tracing_enabled=config.tracing_enabled,
            tracer=tracer,
        )

        try:
            pool.refresh()
        except CacheAuthError as exc:
            logger.error("Remote cache authentication failed during topology refresh")
            raise CacheAuthError(str(exc), cache=cache) from exc
        except CacheConnectionError as exc:
            logger.error("Remote cache topology refresh failed", extra={"error": str(exc)})
            raise CacheConnectionError(str(exc), cache=cache) from exc

        if config.auth_token:
            try:
                with pool.connection() as conn:
                    execute(conn, "AUTH", config.auth_token)
            except (CacheAuthError, RemoteCommandError) as exc:
                logger.error("Remote cache authentication failed")
                raise CacheAuthError(f"authentication failed: {exc}", cache=cache) from exc
            except CacheConnectionError as exc:
                raise CacheConnectionError(str(exc), cache=cache) from exc

        logger.info("RemoteCache initialised", extra={"seed_nodes": pool.seed_nodes})
        return cache

    @property
    def pool(self) -> ClusterPool:
        return self._pool

    @property
    def encoder(self) -> CacheEncoder:
        return self._encoder

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics.inner

    # ------------------------------------------------------------------
    # Bytes operations
    # ------------------------------------------------------------------

    def get_bytes(self, key: str) -> bytes:
        """Return the bytes stored at *key*.

        Raises:
            CacheMissError: If the key does not exist.
            CacheConnectionError: On transport failure or a closed pool.
        """
        with cache_span(
            self._tracer, "remote-cache-get-bytes", self.tracing_enabled,
            {"command": "GET", "key": key},
        ) as span:
            try:
                with self._pool.connection(key) as conn:
                    data = execute(conn, "GET", key)
            except TieredCacheError:
                tag_span(span, "result", "miss")
                raise
            if data is None:
                tag_span(span, "result", "miss")
                raise CacheMissError(key)
            tag_span(span, "result", "hit")
            return data

    def set_bytes(self, key: str, value: bytes) -> None:
        """Store *value* at *key*.

        Raises:
            CacheConnectionError: On transport failure or a closed pool.
        """
        with cache_span(
            self._tracer, "remote-cache-set-bytes", self.tracing_enabled,
            {"command": "SET", "key": key},
        ) as span:
            try:
                with self._pool.connection(key) as conn:
                    execute(conn, "SET", key, value)
            except TieredCacheError:
                tag_span(span, "result", "fail")
                raise
            tag_span(span, "result", "set")

    # ------------------------------------------------------------------
    # Encoded operations
    # ------------------------------------------------------------------

    def get(self, key: str, target: Optional[Any] = None) -> Any:
        """Return the decoded value stored at *key*.

        Records one hit, or one miss for any failure (including a
        failed decode).
        """
        try:
            value = self._encoder.decode(self.get_bytes(key), target)
        except Exception:
            self._metrics.miss()
            raise
        self._metrics.hit()
        return value

    def set(self, key: str, value: Any) -> None:
        """Encode *value* and store it at *key*.

        Raises:
            EncodeError: If the encoder rejects *value*.
            CacheConnectionError: On transport failure or a closed pool.
        """
        try:
            data = self._encoder.encode(value)
        except Exception:
            self._metrics.set_collision()
            raise
        self._metrics.set()
        self.set_bytes(key, data)

    # ------------------------------------------------------------------
    # Delete / purge
    # ------------------------------------------------------------------

    def delete(self, key: str) -> None:
        """Delete every key matching the glob pattern *key*.

        Runs ``KEYS`` then a ``MULTI``/``DEL``.../``EXEC`` batch on one
        connection.  A failed ``KEYS`` is logged and the (empty) batch
        still runs; the error raised, if any, is the batch's.  Records a
        delete hit when at least one key matched, a delete miss otherwise.

        Raises:
            CacheConnectionError: On transport failure or a closed pool.
            RemoteCommandError: If the server rejects the batch.
        """
        with cache_span(
            self._tracer, "remote-cache-delete", self.tracing_enabled,
            {"command": DELETE_COMMAND, "key": key},
        ) as span:
            matching = False
            try:
                with self._pool.connection(key) as conn:
                    matching = True
                    deleted = self._fuzzy_delete(conn, key, span)
            except TieredCacheError:
                if not matching:
                    # No connection, so the match step never ran
                    self._metrics.delete_miss()
                tag_span(span, "result", "fail")
                raise
            tag_span(span, "result", "delete")
        logger.debug(
            "Remote cache keys deleted",
            extra={"pattern": key, "num_keys": deleted},
        )

    def _fuzzy_delete(self, conn: Any, pattern: str, span: Any) -> int:
        matched: List[bytes] = []
        match_failed = False
        try:
            matched = list(execute(conn, "KEYS", pattern) or [])
        except TieredCacheError as e:
            match_failed = True
            logger.warning(
                "Remote cache key match failed",
                extra={"pattern": pattern, "error": str(e)},
            )

        multi_error: Optional[TieredCacheError] = None
        try:
            execute(conn, "MULTI")
        except TieredCacheError as exc:
            multi_error = exc

        tag_span(span, "num_keys", len(matched))
        if match_failed or multi_error is not None or not matched:
            self._metrics.delete_miss()
        else:
            self._metrics.delete_hit()
        if multi_error is not None:
            raise multi_error

        for matched_key in matched:
            execute(conn, "DEL", matched_key)
        execute(conn, "EXEC")
        return len(matched)

    def purge(self) -> None:
        """Wipe the whole cluster with ``FLUSHALL`` on every primary.

        This removes every key in the store, not only keys written
        through this cache.

        Raises:
            CacheConnectionError: On transport failure or a closed pool.
        """
        with cache_span(
            self._tracer, "remote-cache-purge", self.tracing_enabled,
            {"command": "FLUSHALL"},
        ) as span:
            try:
                with self._pool.primary_connections() as conns:
                    for conn in conns:
                        execute(conn, "FLUSHALL")
            except TieredCacheError:
                self._metrics.purge_miss()
                tag_span(span, "result", "fail")
                raise
            self._metrics.purge_hit()
            tag_span(span, "result", "purge")
        logger.info("Remote cache purged")

    def close(self) -> None:
        """Close the pool; later calls on any cache sharing it fail."""
        self._pool.close()
