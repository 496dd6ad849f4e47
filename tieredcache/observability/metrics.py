"""
Cache metrics for tieredcache.

Every cache tier reports the outcome of each operation to a
:class:`CacheMetrics` recorder: eight increment-only counters.  Three
recorders ship with the package:

* :class:`NullCacheMetrics` -- the default; discards everything.
* :class:`InMemoryCacheMetrics` -- thread-safe counters for tests and
  dashboards.
* :class:`PrometheusCacheMetrics` -- ``prometheus_client`` counters
  labelled by ``client`` and ``cache_name``.

Recording is best-effort: tiers wrap whatever recorder they are given
with :func:`guard_metrics` so a failing backend never fails a cache call.
"""

import logging
import threading
import weakref
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

from prometheus_client import REGISTRY, CollectorRegistry, Counter

logger = logging.getLogger(__name__)

COUNTER_NAMES: Tuple[str, ...] = (
    "hit",
    "miss",
    "set",
    "set_collision",
    "delete_hit",
    "delete_miss",
    "purge_hit",
    "purge_miss",
)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


@runtime_checkable
class CacheMetrics(Protocol):
    """Protocol for cache outcome recorders.

    ``set_collision`` fires on any encode failure during ``set``; the
    name is historical.
    """

    def hit(self) -> None: ...

    def miss(self) -> None: ...

    def set(self) -> None: ...

    def set_collision(self) -> None: ...

    def delete_hit(self) -> None: ...

    def delete_miss(self) -> None: ...

    def purge_hit(self) -> None: ...

    def purge_miss(self) -> None: ...


class NullCacheMetrics:
    """Recorder that discards every event."""

    def hit(self) -> None:
        pass

    def miss(self) -> None:
        pass

    def set(self) -> None:
        pass

    def set_collision(self) -> None:
        pass

    def delete_hit(self) -> None:
        pass

    def delete_miss(self) -> None:
        pass

    def purge_hit(self) -> None:
        pass

    def purge_miss(self) -> None:
        pass


# ---------------------------------------------------------------------------
# In-memory counters
# ---------------------------------------------------------------------------


class InMemoryCacheMetrics:
    """Thread-safe in-process counters.

    Thread-safe: all mutations acquire ``_lock``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in COUNTER_NAMES}

    def _incr(self, name: str) -> None:
        with self._lock:
            self._counts[name] += 1

    def hit(self) -> None:
        self._incr("hit")

    def miss(self) -> None:
        self._incr("miss")

    def set(self) -> None:
        self._incr("set")

    def set_collision(self) -> None:
        self._incr("set_collision")

    def delete_hit(self) -> None:
        self._incr("delete_hit")

    def delete_miss(self) -> None:
        self._incr("delete_miss")

    def purge_hit(self) -> None:
        self._incr("purge_hit")

    def purge_miss(self) -> None:
        self._incr("purge_miss")

    def count(self, name: str) -> int:
        """Return the current value of one counter.

        Raises:
            KeyError: If *name* is not one of :data:`COUNTER_NAMES`.
        """
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> Dict[str, int]:
        """Return a copy of every counter."""
        with self._lock:
            return dict(self._counts)

    @property
    def hit_rate(self) -> float:
        """Ratio of hits to lookups (0.0 if no lookups)."""
        with self._lock:
            total = self._counts["hit"] + self._counts["miss"]
            return self._counts["hit"] / total if total > 0 else 0.0

    def reset(self) -> None:
        """Zero every counter."""
        with self._lock:
            for name in self._counts:
                self._counts[name] = 0


# ---------------------------------------------------------------------------
# Prometheus
# ---------------------------------------------------------------------------

_PROMETHEUS_COUNTERS: Dict[str, Tuple[str, str]] = {
    "hit": ("cache_hits", "Total number of cache hits"),
    "miss": ("cache_misses", "Total number of cache misses"),
    "set": ("cache_sets", "Total number of cache sets"),
    "set_collision": ("cache_sets_collisions", "Total number of cache sets collisions"),
    "delete_hit": ("cache_deletes_hits", "Total number of cache deletes hits"),
    "delete_miss": ("cache_deletes_misses", "Total number of cache deletes misses"),
    "purge_hit": ("cache_purges_hits", "Total number of cache purges hits"),
    "purge_miss": ("cache_purges_misses", "Total number of cache purges misses"),
}
_LABELS = ("client", "cache_name")

# Counters are registered once per registry and shared by every recorder;
# entries go away with their registry
_registered: "weakref.WeakKeyDictionary[CollectorRegistry, Dict[str, Counter]]" = (
    weakref.WeakKeyDictionary()
)
_registered_lock = threading.Lock()


def _counters_for(registry: CollectorRegistry) -> Dict[str, Counter]:
    with _registered_lock:
        counters = _registered.get(registry)
        if counters is None:
            counters = {
                name: Counter(metric, doc, _LABELS, registry=registry)
                for name, (metric, doc) in _PROMETHEUS_COUNTERS.items()
            }
            _registered[registry] = counters
            logger.debug("Prometheus cache counters registered")
        return counters


class PrometheusCacheMetrics:
    """Surfaces cache outcomes as Prometheus counters.

    Args:
        client: Name of the application using the cache.
        cache_name: Name of the cache (e.g. ``local``, ``remote``, ``tiered``).
        registry: Registry to publish on; the default process registry
            when omitted.
    """

    def __init__(
        self,
        client: str,
        cache_name: str,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        counters = _counters_for(registry if registry is not None else REGISTRY)
        self.client = client
        self.cache_name = cache_name
        self._children = {
            name: counter.labels(client=client, cache_name=cache_name)
            for name, counter in counters.items()
        }

    def hit(self) -> None:
        self._children["hit"].inc()

    def miss(self) -> None:
        self._children["miss"].inc()

    def set(self) -> None:
        self._children["set"].inc()

    def set_collision(self) -> None:
        self._children["set_collision"].inc()

    def delete_hit(self) -> None:
        self._children["delete_hit"].inc()

    def delete_miss(self) -> None:
        self._children["delete_miss"].inc()

    def purge_hit(self) -> None:
        self._children["purge_hit"].inc()

    def purge_miss(self) -> None:
        self._children["purge_miss"].inc()


# ---------------------------------------------------------------------------
# Best-effort wrapper
# ---------------------------------------------------------------------------


class _GuardedMetrics:
    """Forwards to a recorder, logging and dropping any recorder failure."""

    def __init__(self, inner: CacheMetrics) -> None:
        self.inner = inner

    def _record(self, name: str) -> None:
        try:
            getattr(self.inner, name)()
        except Exception as e:
            logger.debug(
                "Cache metrics recording failed",
                extra={"counter": name, "error": str(e)},
            )

    def hit(self) -> None:
        self._record("hit")

    def miss(self) -> None:
        self._record("miss")

    def set(self) -> None:
        self._record("set")

    def set_collision(self) -> None:
        self._record("set_collision")

    def delete_hit(self) -> None:
        self._record("delete_hit")

    def delete_miss(self) -> None:
        self._record("delete_miss")

    def purge_hit(self) -> None:
        self._record("purge_hit")

    def purge_miss(self) -> None:
        self._record("purge_miss")


def guard_metrics(metrics: Optional[CacheMetrics]) -> _GuardedMetrics:
    """Wrap *metrics* (or a no-op recorder when ``None``) for best-effort use."""
    if isinstance(metrics, _GuardedMetrics):
        return metrics
    return _GuardedMetrics(metrics if metrics is not None else NullCacheMetrics())
