"""
Span helpers for cache operations.

Each traced cache call opens exactly one span, tags it as it goes, and
ends it exactly once on every exit path.  Tracing is best-effort: a
failing tracer is logged and replaced by a no-op span so the cache call
itself is never affected.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace

logger = logging.getLogger(__name__)

TRACER_NAME = "tieredcache"


class _NoOpSpan:
    """Span stand-in used when tracing is disabled or the tracer fails."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def end(self) -> None:
        pass


def get_tracer(tracer: Optional[trace.Tracer] = None) -> trace.Tracer:
    """Return *tracer*, or the globally configured tieredcache tracer."""
    return tracer if tracer is not None else trace.get_tracer(TRACER_NAME)


@contextmanager
def cache_span(
    tracer: trace.Tracer,
    name: str,
    enabled: bool,
    attributes: Optional[Dict[str, Any]] = None,
) -> Iterator[Any]:
    """Open one span around a cache operation.

    Args:
        tracer: Tracer to start the span on.
        name: Span name, e.g. ``remote-cache-get-bytes``.
        enabled: When False a no-op span is yielded.
        attributes: Initial span tags (``command``, ``key``).

    Yields:
        The live span, or a no-op span.
    """
    if not enabled:
        yield _NoOpSpan()
        return

    try:
        span = tracer.start_span(name, attributes=attributes)
    except Exception as e:
        logger.debug("Span start failed", extra={"span": name, "error": str(e)})
        span = _NoOpSpan()

    try:
        yield span
    finally:
        try:
            span.end()
        except Exception as e:
            logger.debug("Span end failed", extra={"span": name, "error": str(e)})


def tag_span(span: Any, key: str, value: Any) -> None:
    """Set one tag on *span*, ignoring tracer failures."""
    try:
        span.set_attribute(key, value)
    except Exception as e:
        logger.debug("Span tag failed", extra={"tag": key, "error": str(e)})
