"""OTLP protobuf encoding of finished spans."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
)
from opentelemetry.proto.common.v1.common_pb2 import (
    AnyValue,
    InstrumentationScope,
    KeyValue,
)
from opentelemetry.proto.resource.v1.resource_pb2 import Resource
from opentelemetry.proto.trace.v1.trace_pb2 import (
    ResourceSpans,
    ScopeSpans,
    TracesData,
)
from opentelemetry.proto.trace.v1.trace_pb2 import (
    Span as OtlpSpan,
)
from opentelemetry.proto.trace.v1.trace_pb2 import (
    Status as OtlpStatus,
)

from spanstream._types import SpanStatus

if TYPE_CHECKING:
    from spanstream._attributes import AttributeValue
    from spanstream._types import Batch, Process, SpanData

SCOPE_NAME = "spanstream"
SCOPE_VERSION = "0.1.0"

_STATUS_MAP: dict[SpanStatus, int] = {
    SpanStatus.UNSET: OtlpStatus.STATUS_CODE_UNSET,
    SpanStatus.OK: OtlpStatus.STATUS_CODE_OK,
    SpanStatus.ERROR: OtlpStatus.STATUS_CODE_ERROR,
}


def _make_attribute(key: str, value: AttributeValue) -> KeyValue:
    """Convert a Python key-value pair to an OTLP KeyValue protobuf."""
    if isinstance(value, bool):
        av = AnyValue(bool_value=value)
    elif isinstance(value, int):
        av = AnyValue(int_value=value)
    elif isinstance(value, float):
        av = AnyValue(double_value=value)
    else:
        av = AnyValue(string_value=str(value))
    return KeyValue(key=key, value=av)


def _make_attributes(attrs: Mapping[str, AttributeValue]) -> list[KeyValue]:
    return [_make_attribute(k, attrs[k]) for k in sorted(attrs)]


def span_data_to_otlp(sd: SpanData) -> OtlpSpan:
    """Convert a single SpanData to an OTLP Span protobuf."""
    status = OtlpStatus(code=_STATUS_MAP[sd.status])  # type: ignore[arg-type]
    if sd.status_message:
        status.message = sd.status_message

    parent = bytes.fromhex(sd.parent_span_id) if sd.parent_span_id else b""

    events = [
        OtlpSpan.Event(
            time_unix_nano=ev.time_ns,
            name=ev.name,
            attributes=_make_attributes(ev.attributes),
        )
        for ev in sd.events
    ]

    return OtlpSpan(
        trace_id=bytes.fromhex(sd.trace_id),
        span_id=bytes.fromhex(sd.span_id),
        parent_span_id=parent,
        name=sd.name,
        kind=OtlpSpan.SPAN_KIND_INTERNAL,
        start_time_unix_nano=sd.start_time_ns,
        end_time_unix_nano=sd.end_time_ns,
        attributes=_make_attributes(sd.attributes),
        events=events,
        status=status,
    )


def process_to_resource(process: Process) -> Resource:
    attrs = [_make_attribute("service.name", process.service_name)]
    attrs.extend(_make_attribute(tag.key, tag.value) for tag in process.tags)
    return Resource(attributes=attrs)


def _resource_spans(process: Process, spans: Iterable[SpanData]) -> ResourceSpans:
    scope = InstrumentationScope(name=SCOPE_NAME, version=SCOPE_VERSION)
    scope_spans = ScopeSpans(scope=scope, spans=[span_data_to_otlp(sd) for sd in spans])
    return ResourceSpans(resource=process_to_resource(process), scope_spans=[scope_spans])


def serialize_span(sd: SpanData, process: Process) -> bytes:
    """Encode one span as a self-contained ``TracesData`` message.

    Encodings can be concatenated: protobuf appends repeated fields on
    merge, so a packet of fragments decodes as a single ``TracesData``.
    """
    return TracesData(resource_spans=[_resource_spans(process, [sd])]).SerializeToString()


def build_export_request(batches: Iterable[Batch]) -> ExportTraceServiceRequest:
    """Build an ExportTraceServiceRequest with one ResourceSpans per batch."""
    return ExportTraceServiceRequest(
        resource_spans=[_resource_spans(b.process, b.spans) for b in batches]
    )
