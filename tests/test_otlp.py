"""Tests for OTLP protobuf encoding."""

from __future__ import annotations

import pytest
from opentelemetry.proto.trace.v1.trace_pb2 import Span as OtlpSpan
from opentelemetry.proto.trace.v1.trace_pb2 import Status as OtlpStatus
from opentelemetry.proto.trace.v1.trace_pb2 import TracesData

from spanstream._attributes import AttributeMap, KeyValue
from spanstream._otlp import (
    SCOPE_NAME,
    SCOPE_VERSION,
    _make_attribute,
    build_export_request,
    process_to_resource,
    serialize_span,
    span_data_to_otlp,
)
from spanstream._types import Batch, Process, SpanData, SpanEventData, SpanStatus


def _make_span_data(**overrides: object) -> SpanData:
    """Create a SpanData with sensible defaults."""
    defaults: dict[str, object] = {
        "span_id": "abcdef0123456789",
        "trace_id": "0123456789abcdef0123456789abcdef",
        "name": "test-span",
        "status": SpanStatus.OK,
        "start_time_ns": 1_000_000_000,
        "end_time_ns": 2_000_000_000,
        "duration_ms": 1000.0,
        "attributes": AttributeMap(),
        "parent_span_id": None,
        "status_message": None,
    }
    defaults.update(overrides)
    return SpanData(**defaults)  # type: ignore[arg-type]


PROCESS = Process(service_name="svc", tags=(KeyValue("host", "h1"),))


class TestMakeAttribute:
    def test_string(self) -> None:
        kv = _make_attribute("key", "value")
        assert kv.key == "key"
        assert kv.value.string_value == "value"

    def test_int(self) -> None:
        kv = _make_attribute("key", 42)
        assert kv.value.int_value == 42

    def test_float(self) -> None:
        kv = _make_attribute("key", 3.14)
        assert kv.value.double_value == pytest.approx(3.14)

    def test_bool_is_not_int(self) -> None:
        kv_true = _make_attribute("key", True)
        kv_one = _make_attribute("key", 1)
        assert kv_true.value.HasField("bool_value")
        assert kv_one.value.HasField("int_value")


class TestSpanDataToOtlp:
    def test_basic_fields(self) -> None:
        otlp = span_data_to_otlp(_make_span_data())
        assert otlp.name == "test-span"
        assert otlp.start_time_unix_nano == 1_000_000_000
        assert otlp.end_time_unix_nano == 2_000_000_000
        assert otlp.kind == OtlpSpan.SPAN_KIND_INTERNAL

    def test_id_bytes(self) -> None:
        otlp = span_data_to_otlp(_make_span_data())
        assert otlp.trace_id == bytes.fromhex("0123456789abcdef0123456789abcdef")
        assert otlp.span_id == bytes.fromhex("abcdef0123456789")
        assert otlp.parent_span_id == b""

    def test_parent_span_id_present(self) -> None:
        otlp = span_data_to_otlp(_make_span_data(parent_span_id="1234567890abcdef"))
        assert otlp.parent_span_id == bytes.fromhex("1234567890abcdef")

    def test_status_error_with_message(self) -> None:
        sd = _make_span_data(status=SpanStatus.ERROR, status_message="boom")
        otlp = span_data_to_otlp(sd)
        assert otlp.status.code == OtlpStatus.STATUS_CODE_ERROR
        assert otlp.status.message == "boom"

    def test_status_unset(self) -> None:
        otlp = span_data_to_otlp(_make_span_data(status=SpanStatus.UNSET))
        assert otlp.status.code == OtlpStatus.STATUS_CODE_UNSET

    def test_attributes_sorted(self) -> None:
        sd = _make_span_data(attributes=AttributeMap({"tokens": 100, "model": "m"}))
        otlp = span_data_to_otlp(sd)
        assert [a.key for a in otlp.attributes] == ["model", "tokens"]
        assert otlp.attributes[0].value.string_value == "m"
        assert otlp.attributes[1].value.int_value == 100

    def test_events(self) -> None:
        ev = SpanEventData(name="retry", time_ns=1_500_000_000, attributes=AttributeMap({"n": 2}))
        otlp = span_data_to_otlp(_make_span_data(events=(ev,)))
        (otlp_ev,) = otlp.events
        assert otlp_ev.name == "retry"
        assert otlp_ev.time_unix_nano == 1_500_000_000
        assert otlp_ev.attributes[0].key == "n"


def test_process_to_resource() -> None:
    resource = process_to_resource(PROCESS)
    attrs = {a.key: a.value.string_value for a in resource.attributes}
    assert attrs == {"service.name": "svc", "host": "h1"}


class TestSerializeSpan:
    def test_fragment_is_traces_data(self) -> None:
        data = TracesData.FromString(serialize_span(_make_span_data(), PROCESS))
        (rs,) = data.resource_spans
        assert rs.scope_spans[0].scope.name == SCOPE_NAME
        assert rs.scope_spans[0].scope.version == SCOPE_VERSION
        assert rs.scope_spans[0].spans[0].name == "test-span"

    def test_concatenated_fragments_decode_together(self) -> None:
        packet = b"".join(
            serialize_span(_make_span_data(name=f"span-{i}"), PROCESS) for i in range(3)
        )
        data = TracesData.FromString(packet)
        names = [rs.scope_spans[0].spans[0].name for rs in data.resource_spans]
        assert names == ["span-0", "span-1", "span-2"]


class TestBuildExportRequest:
    def test_one_resource_spans_per_batch(self) -> None:
        other = Process(service_name="other")
        req = build_export_request(
            [
                Batch(PROCESS, [_make_span_data(), _make_span_data(name="second")]),
                Batch(other, [_make_span_data(name="third")]),
            ]
        )
        assert len(req.resource_spans) == 2
        assert len(req.resource_spans[0].scope_spans[0].spans) == 2
        attrs = {a.key: a.value.string_value for a in req.resource_spans[1].resource.attributes}
        assert attrs["service.name"] == "other"

    def test_empty(self) -> None:
        assert len(build_export_request([]).resource_spans) == 0
