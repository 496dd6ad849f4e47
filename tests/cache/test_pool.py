"""Tests for the cluster connection pool and the shared-pool registry."""

import threading

import pytest
from redis import exceptions as redis_exceptions

from tieredcache.cache import pool as pool_module
from tieredcache.cache.pool import (
    ClusterPool,
    execute,
    get_shared_pool,
    parse_seed_node,
    reset_shared_pool,
)
from tieredcache.exceptions import (
    CacheAuthError,
    CacheConnectionError,
    ConfigurationError,
    RemoteCommandError,
)


class RejectingCluster:
    """Stands in for RedisCluster when every node refuses the password."""

    def __init__(self, **kwargs) -> None:
        try:
            raise redis_exceptions.AuthenticationError("WRONGPASS invalid username-password pair")
        except redis_exceptions.AuthenticationError as exc:
            raise redis_exceptions.RedisClusterException(
                "Redis Cluster cannot be connected. Please provide at least one reachable node"
            ) from exc


class UnreachableCluster:
    def __init__(self, **kwargs) -> None:
        raise redis_exceptions.RedisClusterException("Redis Cluster cannot be connected")


class RejectingNodePool:
    def get_connection(self):
        raise redis_exceptions.AuthenticationError("invalid password")


@pytest.fixture(autouse=True)
def _clean_shared_pool():
    reset_shared_pool()
    yield
    reset_shared_pool()


class TestParseSeedNode:
    def test_host_and_port(self) -> None:
        assert parse_seed_node("10.0.0.1:7000") == ("10.0.0.1", 7000)

    def test_whitespace_trimmed(self) -> None:
        assert parse_seed_node(" cache.internal:7001 ") == ("cache.internal", 7001)

    @pytest.mark.parametrize("address", ["localhost", ":7000", "host:", "host:port"])
    def test_invalid_addresses(self, address: str) -> None:
        with pytest.raises(ConfigurationError):
            parse_seed_node(address)

    def test_pool_validates_seeds_eagerly(self) -> None:
        with pytest.raises(ConfigurationError):
            ClusterPool(["127.0.0.1:7000", "broken"])


class TestConnections:
    def test_round_trip_on_borrowed_connection(self, pool: ClusterPool) -> None:
        with pool.connection("k") as conn:
            execute(conn, "SET", "k", b"v")
        with pool.connection("k") as conn:
            assert execute(conn, "GET", "k") == b"v"

    def test_error_reply_translated(self, pool: ClusterPool) -> None:
        with pytest.raises(RemoteCommandError):
            with pool.connection("k") as conn:
                execute(conn, "NOSUCHCOMMAND")

    def test_connection_released_after_error(self, pool: ClusterPool, fake_client) -> None:
        node_pool = fake_client.connection_pool
        with pytest.raises(RuntimeError):
            with pool.connection("k"):
                raise RuntimeError("boom")
        assert len(node_pool._in_use_connections) == 0

    def test_primary_connections(self, pool: ClusterPool) -> None:
        with pool.primary_connections() as conns:
            assert len(conns) == 1
            assert execute(conns[0], "PING") in (b"PONG", "PONG")

    def test_server_down(self, pool: ClusterPool, fake_server) -> None:
        fake_server.connected = False
        with pytest.raises(CacheConnectionError):
            with pool.connection("k") as conn:
                execute(conn, "GET", "k")


class TestLifecycle:
    def test_refresh_pings_injected_client(self, pool: ClusterPool) -> None:
        pool.refresh()

    def test_refresh_failure_raises(self, pool: ClusterPool, fake_server) -> None:
        fake_server.connected = False
        with pytest.raises(CacheConnectionError, match="refresh failed"):
            pool.refresh()

    def test_cluster_refresh_wrong_password(self, monkeypatch) -> None:
        monkeypatch.setattr(pool_module, "RedisCluster", RejectingCluster)
        p = ClusterPool(["127.0.0.1:7000"], password="wrong")
        with pytest.raises(CacheAuthError, match="rejected credentials"):
            p.refresh()

    def test_cluster_refresh_unreachable_is_connection_error(self, monkeypatch) -> None:
        monkeypatch.setattr(pool_module, "RedisCluster", UnreachableCluster)
        with pytest.raises(CacheConnectionError):
            ClusterPool(["127.0.0.1:7000"]).refresh()

    def test_new_connection_wrong_password(self) -> None:
        with pytest.raises(CacheAuthError):
            ClusterPool._acquire(RejectingNodePool())

    def test_close_is_idempotent(self, pool: ClusterPool) -> None:
        assert pool.close() is True
        assert pool.close() is False
        assert pool.closed

    def test_concurrent_close_closes_once(self, pool: ClusterPool) -> None:
        results = []
        barrier = threading.Barrier(8)

        def closer() -> None:
            barrier.wait()
            results.append(pool.close())

        threads = [threading.Thread(target=closer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    def test_operations_after_close_fail(self, pool: ClusterPool) -> None:
        pool.close()
        with pytest.raises(CacheConnectionError, match="closed"):
            with pool.connection("k"):
                pass
        with pytest.raises(CacheConnectionError, match="closed"):
            pool.refresh()

    def test_construction_performs_no_io(self) -> None:
        p = ClusterPool(["127.0.0.1:1"])
        assert not p.closed
        assert p.close() is True


class TestSharedPool:
    def test_returns_same_instance(self) -> None:
        a = get_shared_pool(["127.0.0.1:7000"])
        b = get_shared_pool(["127.0.0.1:7000"])
        assert a is b

    def test_later_seeds_ignored(self, caplog) -> None:
        a = get_shared_pool(["127.0.0.1:7000"])
        with caplog.at_level("WARNING", logger="tieredcache.cache.pool"):
            b = get_shared_pool(["10.9.9.9:7000"])
        assert b is a
        assert b.seed_nodes == ["127.0.0.1:7000"]
        assert "ignoring different seed nodes" in caplog.text

    def test_concurrent_first_use_builds_one_pool(self) -> None:
        seen = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            seen.append(get_shared_pool(["127.0.0.1:7000"]))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({id(p) for p in seen}) == 1

    def test_closed_shared_pool_stays_closed(self) -> None:
        a = get_shared_pool(["127.0.0.1:7000"])
        a.close()
        assert get_shared_pool(["127.0.0.1:7000"]).closed

    def test_reset_closes_and_forgets(self) -> None:
        a = get_shared_pool(["127.0.0.1:7000"])
        reset_shared_pool()
        assert a.closed
        assert pool_module._shared_pool is None
        assert get_shared_pool(["127.0.0.1:7000"]) is not a
