"""
tieredcache exception hierarchy.

All custom exceptions inherit from TieredCacheError so callers can
catch a single base type when they want a broad safety net.
"""

from typing import Any, Optional


class TieredCacheError(Exception):
    """Base exception for all tieredcache errors."""


class ConfigurationError(TieredCacheError, ValueError):
    """Raised when cache configuration is invalid (e.g. a bad shard count)."""


class CacheMissError(TieredCacheError, KeyError):
    """Raised when a key is absent or expired in a cache tier."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"cache miss for key {self.key!r}"


class EncodeError(TieredCacheError, ValueError):
    """Raised when a value cannot be serialized for caching."""


class DecodeError(TieredCacheError, ValueError):
    """Raised when cached bytes cannot be deserialized into the target."""


class CacheConnectionError(TieredCacheError, ConnectionError):
    """Raised on pool, network or cluster-topology refresh failures.

    When raised while constructing a remote cache, ``cache`` holds the
    cache value that was built anyway so the caller can inspect or retry.
    """

    def __init__(self, message: str, cache: Optional[Any] = None) -> None:
        super().__init__(message)
        self.cache = cache


class CacheAuthError(TieredCacheError):
    """Raised when the remote store rejects the configured auth token."""

    def __init__(self, message: str, cache: Optional[Any] = None) -> None:
        super().__init__(message)
        self.cache = cache


class RemoteCommandError(TieredCacheError):
    """Raised when the remote store replies to a command with an error."""
