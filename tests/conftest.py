"""Shared fixtures for the tieredcache test suite."""

from typing import Any, Dict, Optional

import pytest

from tieredcache.cache.pool import ClusterPool
from tieredcache.encoding import CacheEncoder, PickleEncoder
from tieredcache.exceptions import CacheMissError, RemoteCommandError
from tieredcache.observability.metrics import InMemoryCacheMetrics


class DictCache:
    """Dictionary-backed cache tier for orchestration tests.

    Set ``fail_writes``/``fail_deletes``/``fail_purge`` to make the
    matching operations raise ``RemoteCommandError``.
    """

    def __init__(self, encoder: Optional[CacheEncoder] = None) -> None:
        self.store: Dict[str, bytes] = {}
        self.encoder = encoder if encoder is not None else PickleEncoder()
        self.fail_writes = False
        self.fail_deletes = False
        self.fail_purge = False
        self.closed = 0

    def get_bytes(self, key: str) -> bytes:
        if key not in self.store:
            raise CacheMissError(key)
        return self.store[key]

    def get(self, key: str, target: Optional[Any] = None) -> Any:
        return self.encoder.decode(self.get_bytes(key), target)

    def set_bytes(self, key: str, value: bytes) -> None:
        if self.fail_writes:
            raise RemoteCommandError("write refused")
        self.store[key] = value

    def set(self, key: str, value: Any) -> None:
        self.set_bytes(key, self.encoder.encode(value))

    def delete(self, key: str) -> None:
        if self.fail_deletes:
            raise RemoteCommandError("delete refused")
        if key not in self.store:
            raise CacheMissError(key)
        del self.store[key]

    def purge(self) -> None:
        if self.fail_purge:
            raise RemoteCommandError("purge refused")
        self.store = {}

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def metrics() -> InMemoryCacheMetrics:
    return InMemoryCacheMetrics()


@pytest.fixture
def fake_server():
    """A fakeredis server; set ``connected = False`` to simulate an outage."""
    fakeredis = pytest.importorskip("fakeredis")
    return fakeredis.FakeServer()


@pytest.fixture
def fake_client(fake_server):
    import fakeredis

    return fakeredis.FakeRedis(server=fake_server)


@pytest.fixture
def pool(fake_client) -> ClusterPool:
    """A ClusterPool over a single fakeredis node."""
    return ClusterPool(["127.0.0.1:6379"], _client=fake_client)


@pytest.fixture
def span_exporter():
    """In-memory exporter plus a tracer that writes to it."""
    pytest.importorskip("opentelemetry.sdk")
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SimpleSpanProcessor
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
        InMemorySpanExporter,
    )

    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    exporter.tracer = provider.get_tracer("tieredcache-tests")
    return exporter


@pytest.fixture
def local_double() -> DictCache:
    return DictCache()


@pytest.fixture
def remote_double() -> DictCache:
    return DictCache()
