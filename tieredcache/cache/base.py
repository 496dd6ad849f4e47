"""
The cache contract shared by every tier.

Any object implementing these seven methods can serve as the local or
remote tier of a :class:`~tieredcache.cache.tiered.TieredCache`,
including test doubles.  Failures are raised, never returned:
:class:`~tieredcache.exceptions.CacheMissError` for an absent key, the
other :mod:`tieredcache.exceptions` types for everything else.
"""

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class Cache(Protocol):
    """Protocol for cache tiers keyed by flat strings."""

    def get_bytes(self, key: str) -> bytes:
        """Return the raw bytes stored at *key*."""
        ...

    def get(self, key: str, target: Optional[Any] = None) -> Any:
        """Return the decoded value stored at *key*."""
        ...

    def set_bytes(self, key: str, value: bytes) -> None:
        """Store raw bytes at *key*, overwriting any previous value."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Encode *value* and store it at *key*."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key*."""
        ...

    def purge(self) -> None:
        """Remove every entry the tier holds."""
        ...

    def close(self) -> None:
        """Release any resources held by the tier."""
        ...
