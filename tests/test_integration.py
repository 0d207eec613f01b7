"""Integration tests: producers through the pipeline to a UDP agent."""

import socket
import threading
from collections.abc import Iterator

import pytest
from opentelemetry.proto.trace.v1.trace_pb2 import TracesData

import spanstream
import spanstream._sdk as sdk_mod
from spanstream._types import SpanData, SpanStatus


def setup_function() -> None:
    sdk_mod._pipeline = None


def teardown_function() -> None:
    spanstream.shutdown()


class _CollectingExporter:
    def __init__(self) -> None:
        self.spans: list[SpanData] = []
        self._lock = threading.Lock()

    def export(self, spans: list[SpanData]) -> None:
        with self._lock:
            self.spans.extend(spans)

    def shutdown(self) -> None:
        pass


def _install(service_name: str) -> _CollectingExporter:
    exporter = _CollectingExporter()
    pipeline = sdk_mod.Pipeline(
        spanstream.PipelineConfig(service_name=service_name), exporter=exporter
    )
    pipeline.start()
    sdk_mod._pipeline = pipeline
    return exporter


@pytest.fixture
def agent() -> Iterator[socket.socket]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5.0)
    yield sock
    sock.close()


def test_full_lifecycle() -> None:
    """decorator, nested spans and attributes all arrive as linked SpanData."""
    collected = _install("integration-test")

    @spanstream.trace(name="handle-request")
    def handle_request() -> str:
        with spanstream.span("validate-input") as s:
            s.set_attribute("input_length", 100)

        with spanstream.span("run-inference") as s:
            s.add_event("model-loaded", {"model": "llama-3-8b"})
            with spanstream.span("tokenize"):
                pass
            with spanstream.span("forward-pass") as inner:
                inner.set_attribute("model", "llama-3-8b")

        return "done"

    assert handle_request() == "done"
    spanstream.shutdown()

    assert len(collected.spans) == 5
    by_name = {s.name: s for s in collected.spans}
    root = by_name["handle-request"]
    assert root.parent_span_id is None

    validate = by_name["validate-input"]
    assert validate.parent_span_id == root.span_id
    assert validate.attributes["input_length"] == 100

    inference = by_name["run-inference"]
    assert inference.parent_span_id == root.span_id
    assert [e.name for e in inference.events] == ["model-loaded"]

    assert by_name["tokenize"].parent_span_id == inference.span_id
    forward = by_name["forward-pass"]
    assert forward.parent_span_id == inference.span_id
    assert forward.attributes["model"] == "llama-3-8b"

    assert len({s.trace_id for s in collected.spans}) == 1
    # Children finish first.
    assert collected.spans[-1].name == "handle-request"


def test_deep_nesting() -> None:
    collected = _install("deep-test")

    depth = 10

    def nest(level: int) -> None:
        if level == 0:
            return
        with spanstream.span(f"level-{level}"):
            nest(level - 1)

    nest(depth)
    spanstream.shutdown()

    assert len(collected.spans) == depth
    by_name = {s.name: s for s in collected.spans}
    for i in range(1, depth):
        assert by_name[f"level-{i}"].parent_span_id == by_name[f"level-{i + 1}"].span_id


def test_concurrent_traces() -> None:
    """Multiple threads creating independent traces."""
    collected = _install("concurrent-test")

    def worker(worker_id: int) -> None:
        with spanstream.span(f"worker-{worker_id}") as s:
            s.set_attribute("worker_id", worker_id)
            with spanstream.span(f"task-{worker_id}"):
                pass

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    spanstream.shutdown()

    assert len(collected.spans) == 10
    assert len({s.trace_id for s in collected.spans}) == 5
    by_name = {s.name: s for s in collected.spans}
    for i in range(5):
        assert by_name[f"task-{i}"].trace_id == by_name[f"worker-{i}"].trace_id
        assert by_name[f"worker-{i}"].attributes["worker_id"] == i


def test_error_in_nested_span() -> None:
    collected = _install("error-test")

    with pytest.raises(ValueError):
        with spanstream.span("outer"):
            with spanstream.span("inner"):
                raise ValueError("boom")
    spanstream.shutdown()

    by_name = {s.name: s for s in collected.spans}
    assert by_name["inner"].status is SpanStatus.ERROR
    assert by_name["inner"].status_message == "boom"
    assert by_name["outer"].status is SpanStatus.ERROR


def test_spans_reach_udp_agent(agent: socket.socket) -> None:
    port = agent.getsockname()[1]
    spanstream.init(
        service_name="wire-test",
        agent_host="127.0.0.1",
        agent_port=port,
        flush_interval_ms=60000,
        resource_attributes={"zone": "test"},
    )

    with spanstream.entries(tenant="acme"):
        with spanstream.span("outer"):
            with spanstream.span("inner") as inner:
                inner.set_attribute("rows", 7)
    spanstream.shutdown()

    data = TracesData.FromString(agent.recv(65535))
    spans = [span for rs in data.resource_spans for ss in rs.scope_spans for span in ss.spans]
    assert [s.name for s in spans] == ["inner", "outer"]
    assert spans[0].parent_span_id == spans[1].span_id
    assert spans[0].attributes[0].key == "rows"
    assert spans[0].attributes[0].value.int_value == 7

    resource = {a.key: a.value.string_value for a in data.resource_spans[0].resource.attributes}
    assert resource == {"service.name": "wire-test", "zone": "test"}
