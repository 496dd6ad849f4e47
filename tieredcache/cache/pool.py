"""
Connection pool for the remote cache tier.

:class:`ClusterPool` owns one ``redis-py`` cluster client and hands out
raw connections one call at a time: a connection is acquired from the
node that owns the key's slot and released as soon as the call is done.
The pool is built lazily on the first topology refresh and closed at
most once.

Most processes share a single pool.  :func:`get_shared_pool` returns the
process-wide instance, creating it from the first caller's settings;
pass an explicit :class:`ClusterPool` to
:class:`~tieredcache.cache.remote.RemoteCache` to opt out of sharing.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from redis import exceptions as redis_exceptions
from redis.cluster import ClusterNode, RedisCluster

from tieredcache.exceptions import (
    CacheAuthError,
    CacheConnectionError,
    ConfigurationError,
    RemoteCommandError,
)

logger = logging.getLogger(__name__)

_REDIS_ERRORS = (redis_exceptions.RedisError, redis_exceptions.RedisClusterException)


def _rejected_auth(exc: BaseException) -> bool:
    # The cluster client wraps per-node AUTH failures in RedisClusterException
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, redis_exceptions.AuthenticationError):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False


def parse_seed_node(address: str) -> Tuple[str, int]:
    """Split a ``host:port`` seed address.

    Raises:
        ConfigurationError: If the address has no valid port.
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ConfigurationError(f"invalid seed node {address!r}: expected host:port")
    return host, int(port)


def execute(conn: Any, *args: Any) -> Any:
    """Send one command on *conn* and return its reply.

    Raises:
        CacheAuthError: If the server rejects authentication.
        CacheConnectionError: On transport failures and timeouts.
        RemoteCommandError: If the server replies with an error.
    """
    try:
        conn.send_command(*args)
        return conn.read_response()
    except redis_exceptions.AuthenticationError as exc:
        raise CacheAuthError(f"{args[0]} rejected: {exc}") from exc
    except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
        raise CacheConnectionError(f"{args[0]} failed: {exc}") from exc
    except redis_exceptions.ResponseError as exc:
        raise RemoteCommandError(f"{args[0]} failed: {exc}") from exc
    except redis_exceptions.RedisError as exc:
        raise CacheConnectionError(f"{args[0]} failed: {exc}") from exc


class ClusterPool:
    """Lazily built, close-once pool of connections to a Redis cluster.

    Thread-safe: building, refreshing and closing acquire ``_lock``;
    connections are never shared between concurrent calls.

    Args:
        seed_nodes: ``host:port`` addresses used to discover the cluster.
        connect_timeout_seconds: Socket connect timeout for every node.
        password: Password sent by every new connection, if any.
        max_connections: Per-node connection limit.
        _client: Pre-built client (a single-node ``redis.Redis`` or
            ``fakeredis`` instance in tests) used instead of a cluster.
    """

    def __init__(
        self,
        seed_nodes: Sequence[str],
        connect_timeout_seconds: float = 5.0,
        password: Optional[str] = None,
        max_connections: int = 10,
        _client: Optional[Any] = None,
    ) -> None:
        self._seed_nodes = list(seed_nodes)
        # Validate eagerly so a typo fails at construction, not first use
        self._startup_nodes = [ClusterNode(*parse_seed_node(a)) for a in self._seed_nodes]
        self._connect_timeout = connect_timeout_seconds
        self._password = password or None
        self._max_connections = max_connections
        self._client = _client
        self._closed = False
        self._lock = threading.Lock()

    @property
    def seed_nodes(self) -> List[str]:
        return list(self._seed_nodes)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _build_client(self) -> RedisCluster:
        client = RedisCluster(
            startup_nodes=self._startup_nodes,
            password=self._password,
            socket_connect_timeout=self._connect_timeout,
            max_connections=self._max_connections,
        )
        logger.info(
            "Cluster pool built",
            extra={"seed_nodes": self._seed_nodes, "connect_timeout": self._connect_timeout},
        )
        return client

    def refresh(self) -> None:
        """Build the client, or re-read the cluster's slot map.

        Raises:
            CacheAuthError: If a node rejects the configured password.
            CacheConnectionError: If the pool is closed or no node answers.
        """
        with self._lock:
            if self._closed:
                raise CacheConnectionError("connection pool is closed")
            try:
                if self._client is None:
                    self._client = self._build_client()
                elif isinstance(self._client, RedisCluster):
                    self._client.nodes_manager.initialize()
                else:
                    self._client.ping()
            except _REDIS_ERRORS as exc:
                if _rejected_auth(exc):
                    raise CacheAuthError(f"cluster refresh rejected credentials: {exc}") from exc
                raise CacheConnectionError(f"cluster refresh failed: {exc}") from exc
        logger.debug("Cluster topology refreshed")

    def close(self) -> bool:
        """Tear the pool down.

        Safe to call any number of times from any thread; only the first
        call closes the client.

        Returns:
            True if this call closed the pool, False if it was already closed.
        """
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            client = self._client
        if client is not None:
            try:
                client.close()
            except _REDIS_ERRORS as e:
                logger.warning("Cluster pool close failed", extra={"error": str(e)})
        logger.info("Cluster pool closed")
        return True

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _ensure_client(self) -> Any:
        if self._closed:
            raise CacheConnectionError("connection pool is closed")
        if self._client is None:
            self.refresh()
        return self._client

    def _node_pool(self, key: Optional[str]) -> Any:
        client = self._ensure_client()
        if not isinstance(client, RedisCluster):
            return client.connection_pool
        try:
            if key is None:
                node = client.get_random_node()
            else:
                node = client.get_node_from_key(key)
            return client.get_redis_connection(node).connection_pool
        except _REDIS_ERRORS as exc:
            raise CacheConnectionError(f"no node available for key {key!r}: {exc}") from exc

    def _primary_pools(self) -> List[Any]:
        client = self._ensure_client()
        if not isinstance(client, RedisCluster):
            return [client.connection_pool]
        return [client.get_redis_connection(node).connection_pool for node in client.get_primaries()]

    @staticmethod
    def _acquire(node_pool: Any) -> Any:
        try:
            return node_pool.get_connection()
        except _REDIS_ERRORS as exc:
            if _rejected_auth(exc):
                raise CacheAuthError(f"connection rejected credentials: {exc}") from exc
            raise CacheConnectionError(f"could not acquire connection: {exc}") from exc

    @contextmanager
    def connection(self, key: Optional[str] = None) -> Iterator[Any]:
        """Borrow one connection to the node owning *key*'s slot.

        The connection goes back to the pool on exit.  If the body
        raises, the connection is disconnected first so no half-finished
        transaction or unread reply leaks into the next borrower.

        Raises:
            CacheAuthError: If a new connection is refused its password.
            CacheConnectionError: If the pool is closed or no connection
                can be opened.
        """
        node_pool = self._node_pool(key)
        conn = self._acquire(node_pool)
        try:
            yield conn
        except BaseException:
            conn.disconnect()
            raise
        finally:
            node_pool.release(conn)

    @contextmanager
    def primary_connections(self) -> Iterator[List[Any]]:
        """Borrow one connection per primary node; all released on exit."""
        acquired: List[Tuple[Any, Any]] = []
        try:
            for node_pool in self._primary_pools():
                acquired.append((node_pool, self._acquire(node_pool)))
            yield [conn for _, conn in acquired]
        except BaseException:
            for _, conn in acquired:
                conn.disconnect()
            raise
        finally:
            for node_pool, conn in acquired:
                node_pool.release(conn)


# ---------------------------------------------------------------------------
# Process-wide shared pool
# ---------------------------------------------------------------------------

_shared_pool: Optional[ClusterPool] = None
_shared_lock = threading.Lock()


def get_shared_pool(
    seed_nodes: Sequence[str],
    connect_timeout_seconds: float = 5.0,
    password: Optional[str] = None,
    max_connections: int = 10,
) -> ClusterPool:
    """Return the process-wide :class:`ClusterPool`, creating it once.

    The first caller's arguments build the pool.  Later callers get the
    same pool whatever they pass; differing seed lists are logged and
    ignored.  A closed shared pool stays closed.
    """
    global _shared_pool

    pool = _shared_pool
    if pool is None:
        with _shared_lock:
            # Double-check after acquiring lock
            if _shared_pool is None:
                _shared_pool = ClusterPool(
                    seed_nodes,
                    connect_timeout_seconds=connect_timeout_seconds,
                    password=password,
                    max_connections=max_connections,
                )
                logger.info("Shared cluster pool created", extra={"seed_nodes": list(seed_nodes)})
                return _shared_pool
            pool = _shared_pool

    if list(seed_nodes) != pool.seed_nodes:
        logger.warning(
            "Shared cluster pool already exists; ignoring different seed nodes",
            extra={"requested": list(seed_nodes), "in_use": pool.seed_nodes},
        )
    return pool


def reset_shared_pool() -> None:
    """Close and forget the shared pool (for testing)."""
    global _shared_pool
    with _shared_lock:
        pool, _shared_pool = _shared_pool, None
    if pool is not None:
        pool.close()
