"""Tests for the span helpers."""

from tieredcache.observability.tracing import _NoOpSpan, cache_span, get_tracer, tag_span


class _BrokenTracer:
    def start_span(self, name, attributes=None):
        raise RuntimeError("collector unreachable")


class _CountingSpan:
    def __init__(self) -> None:
        self.ended = 0
        self.tags = {}

    def set_attribute(self, key, value) -> None:
        self.tags[key] = value

    def end(self) -> None:
        self.ended += 1


class _CountingTracer:
    def __init__(self) -> None:
        self.spans = []

    def start_span(self, name, attributes=None):
        span = _CountingSpan()
        span.tags.update(attributes or {})
        self.spans.append(span)
        return span


class TestCacheSpan:
    def test_disabled_yields_noop(self) -> None:
        tracer = _CountingTracer()
        with cache_span(tracer, "local-cache-get-bytes", False) as span:
            assert isinstance(span, _NoOpSpan)
        assert tracer.spans == []

    def test_span_ends_once_on_success(self) -> None:
        tracer = _CountingTracer()
        with cache_span(tracer, "op", True, {"command": "GET", "key": "k"}) as span:
            tag_span(span, "result", "hit")
        only = tracer.spans[0]
        assert only.ended == 1
        assert only.tags == {"command": "GET", "key": "k", "result": "hit"}

    def test_span_ends_once_on_error(self) -> None:
        tracer = _CountingTracer()
        try:
            with cache_span(tracer, "op", True):
                raise KeyError("k")
        except KeyError:
            pass
        assert tracer.spans[0].ended == 1

    def test_broken_tracer_falls_back_to_noop(self) -> None:
        with cache_span(_BrokenTracer(), "op", True) as span:
            assert isinstance(span, _NoOpSpan)

    def test_real_tracer_exports_span(self, span_exporter) -> None:
        with cache_span(span_exporter.tracer, "remote-cache-set-bytes", True, {"key": "a"}) as span:
            tag_span(span, "result", "set")
        (finished,) = span_exporter.get_finished_spans()
        assert finished.name == "remote-cache-set-bytes"
        assert finished.attributes["result"] == "set"


class TestTagSpan:
    def test_failures_ignored(self) -> None:
        tag_span(object(), "result", "hit")

    def test_get_tracer_prefers_explicit(self) -> None:
        tracer = _CountingTracer()
        assert get_tracer(tracer) is tracer
        assert get_tracer() is not None
