"""Tests for _tracer module."""

import threading
import time

import pytest

from spanstream._attributes import Mutator, MutatorOp
from spanstream._observer import ObserverRegistry
from spanstream._reader import ReaderObserver
from spanstream._spans import SpanAssembler, span_record_to_data
from spanstream._tracer import Span, Tracer
from spanstream._types import (
    Event,
    EventType,
    Resource,
    ScopeID,
    SpanContext,
    SpanData,
    SpanStatus,
)


class _Recorder:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def observe(self, event: Event) -> None:
        self.events.append(event)


def _setup(**tracer_attrs: object) -> tuple[Tracer, list[SpanData], ReaderObserver]:
    """Tracer wired synchronously to a reconstructor that collects SpanData."""
    registry = ObserverRegistry()
    spans: list[SpanData] = []
    observer = ReaderObserver(
        SpanAssembler(lambda record: spans.append(span_record_to_data(record, Resource())))
    )
    registry.register(observer)
    return Tracer(registry, attributes=tracer_attrs or None), spans, observer  # type: ignore[arg-type]


def test_span_timing() -> None:
    tracer, spans, _ = _setup()
    with tracer.start_span("timed"):
        time.sleep(0.01)

    (sd,) = spans
    assert sd.start_time_ns > 0
    assert sd.end_time_ns > sd.start_time_ns
    assert sd.duration_ms >= 10.0


def test_span_auto_ok() -> None:
    tracer, spans, _ = _setup()
    with tracer.start_span("ok-span"):
        pass
    assert spans[0].status is SpanStatus.OK


def test_span_auto_error_on_exception() -> None:
    tracer, spans, _ = _setup()
    with pytest.raises(ValueError, match="test error"):
        with tracer.start_span("err-span"):
            raise ValueError("test error")

    (sd,) = spans
    assert sd.status is SpanStatus.ERROR
    assert sd.status_message == "test error"


def test_explicit_status_is_kept() -> None:
    tracer, spans, _ = _setup()
    with tracer.start_span("degraded") as s:
        s.set_status(SpanStatus.ERROR, "partial result")
    assert spans[0].status is SpanStatus.ERROR
    assert spans[0].status_message == "partial result"


def test_span_attributes() -> None:
    tracer, spans, _ = _setup()
    with tracer.start_span("attr-span", attributes={"route": "/v1"}) as s:
        s.set_attribute("model", "llama-3")
        s.set_attributes({"batch_size": 32, "stream": True})
        s.apply_mutators(Mutator(MutatorOp.DELETE, "route"))
        s.apply_mutators(
            Mutator(MutatorOp.INSERT, "model", "ignored"),
            Mutator(MutatorOp.UPDATE, "batch_size", 64),
        )

    assert dict(spans[0].attributes) == {"model": "llama-3", "batch_size": 64, "stream": True}


def test_tracer_attributes_are_inherited() -> None:
    tracer, spans, _ = _setup(component="db")
    with tracer.start_span("query") as s:
        s.set_attribute("rows", 3)
    assert dict(spans[0].attributes) == {"component": "db", "rows": 3}


def test_add_event() -> None:
    tracer, spans, _ = _setup()
    with tracer.start_span("op") as s:
        s.set_attribute("a", 1)
        s.add_event("cache-miss", {"key": "k1"})

    (ev,) = spans[0].events
    assert ev.name == "cache-miss"
    assert dict(ev.attributes) == {"a": 1, "key": "k1"}


def test_update_name() -> None:
    tracer, spans, _ = _setup()
    with tracer.start_span("draft") as s:
        s.update_name("final")
    assert s.name == "final"
    assert spans[0].name == "final"


def test_nested_spans_share_trace() -> None:
    tracer, spans, observer = _setup()
    with tracer.start_span("parent") as parent:
        parent.set_attribute("p", 1)
        with tracer.start_span("child") as child:
            pass

    by_name = {s.name: s for s in spans}
    assert by_name["child"].trace_id == by_name["parent"].trace_id
    assert by_name["child"].parent_span_id == parent.span_context.span_id
    assert by_name["parent"].parent_span_id is None
    assert child.span_context.trace_id == parent.span_context.trace_id
    # Child attributes do not inherit from the parent span.
    assert dict(by_name["child"].attributes) == {}
    assert len(observer) == 0


def test_explicit_parent_after_end() -> None:
    tracer, spans, _ = _setup()
    parent = tracer.start_span("parent")
    parent.end()
    child = tracer.start_span("late-child", parent=parent)
    child.end()

    assert spans[-1].parent_span_id == parent.span_context.span_id
    assert spans[-1].trace_id == parent.span_context.trace_id


def test_remote_parent() -> None:
    tracer, spans, _ = _setup()
    remote = SpanContext(
        trace_id="fedcba9876543210fedcba9876543210", span_id="2222222222222222", trace_flags=1
    )
    with tracer.start_span("server", parent=remote) as s:
        pass

    assert s.span_context.trace_id == remote.trace_id
    assert s.span_context.is_sampled
    assert spans[0].parent_span_id == remote.span_id


def test_new_root_span_context() -> None:
    tracer, _, _ = _setup()
    s = tracer.start_span("root")
    sc = s.span_context
    assert len(sc.trace_id) == 32
    assert len(sc.span_id) == 16
    assert sc.is_valid()
    assert sc.is_sampled
    s.end()


def test_end_is_idempotent_and_ignores_later_calls() -> None:
    registry = ObserverRegistry()
    recorder = _Recorder()
    registry.register(recorder)
    s = Tracer(registry).start_span("op")

    s.end()
    s.end()
    s.set_attribute("late", True)
    s.add_event("late")

    assert [e.type for e in recorder.events] == [EventType.START_SPAN, EventType.END_SPAN]
    assert not s.is_recording


def test_attribute_changes_advance_scope() -> None:
    registry = ObserverRegistry()
    recorder = _Recorder()
    registry.register(recorder)
    s = Tracer(registry).start_span("op")
    start_seq = recorder.events[0].sequence
    assert s.scope.event_id == start_seq

    s.set_attribute("a", 1)
    modify = recorder.events[-1]
    assert modify.scope.event_id == start_seq
    assert s.scope.event_id == modify.sequence

    s.add_event("tick")
    assert s.scope.event_id == modify.sequence
    s.end()
    assert recorder.events[-1].scope.event_id == modify.sequence


def test_child_start_races_parent_end() -> None:
    tracer, spans, observer = _setup()
    errors: list[BaseException] = []
    rounds = 300

    for _ in range(rounds):
        parent = tracer.start_span("parent")
        barrier = threading.Barrier(2)

        def end_parent(span: Span = parent, gate: threading.Barrier = barrier) -> None:
            gate.wait()
            try:
                span.end()
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        t = threading.Thread(target=end_parent)
        t.start()
        barrier.wait()
        child = tracer.start_span("child", parent=parent)
        child.end()
        t.join()

        assert child.span_context.trace_id == parent.span_context.trace_id

    assert errors == []
    assert len(spans) == 2 * rounds
    children = [sd for sd in spans if sd.name == "child"]
    assert len(children) == rounds
    assert all(sd.parent_span_id is not None for sd in children)
    assert len(observer) == 0


def test_span_requires_span_context() -> None:
    with pytest.raises(ValueError, match="span context"):
        Span(ObserverRegistry(), "orphan", ScopeID(1, None))


def test_span_context_is_stable_across_scope_changes() -> None:
    tracer, _, _ = _setup()
    s = tracer.start_span("op")
    sc = s.span_context
    s.set_attribute("a", 1)
    s.end()
    assert s.span_context is sc
