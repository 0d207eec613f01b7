"""spanstream: ordered span reconstruction and resilient UDP delivery."""

from __future__ import annotations

from collections.abc import Mapping

from spanstream._attributes import AttributeMap, KeyValue, MapUpdate, Mutator, MutatorOp
from spanstream._bus import EventBuffer
from spanstream._config import PipelineConfig
from spanstream._context import entries, get_current_span
from spanstream._errors import (
    ExportTimeoutError,
    InvariantError,
    MultipleErrors,
    NotConnectedError,
    PacketTooLargeError,
    ScopeNotFoundError,
    SpanNotFoundError,
    SpanstreamError,
    UnhandledEventError,
)
from spanstream._exporter import AgentExporter, OTLPExporter
from spanstream._meter import LabelSet, Meter
from spanstream._observer import Observer, ObserverRegistry
from spanstream._reader import Reader, ReaderObserver
from spanstream._sdk import Pipeline, _get_pipeline, init, shutdown
from spanstream._spans import SpanAssembler, batch_spans, span_record_to_data
from spanstream._trace import trace
from spanstream._tracer import Span, Tracer
from spanstream._transport import ReconnectingUDPConnection, UDPConnection
from spanstream._types import (
    ROOT_SCOPE,
    Batch,
    Event,
    EventType,
    Measurement,
    Process,
    ReaderEvent,
    Resource,
    ScopeID,
    SpanContext,
    SpanData,
    SpanRecord,
    SpanStatus,
)
from spanstream._uploader import BatchUploader

__version__ = "0.1.0"

__all__ = [
    "ROOT_SCOPE",
    "AgentExporter",
    "AttributeMap",
    "Batch",
    "BatchUploader",
    "Event",
    "EventBuffer",
    "EventType",
    "ExportTimeoutError",
    "InvariantError",
    "KeyValue",
    "LabelSet",
    "MapUpdate",
    "Measurement",
    "Meter",
    "MultipleErrors",
    "Mutator",
    "MutatorOp",
    "NotConnectedError",
    "OTLPExporter",
    "Observer",
    "ObserverRegistry",
    "PacketTooLargeError",
    "Pipeline",
    "PipelineConfig",
    "Process",
    "Reader",
    "ReaderEvent",
    "ReaderObserver",
    "ReconnectingUDPConnection",
    "Resource",
    "ScopeID",
    "ScopeNotFoundError",
    "Span",
    "SpanAssembler",
    "SpanContext",
    "SpanData",
    "SpanNotFoundError",
    "SpanRecord",
    "SpanStatus",
    "SpanstreamError",
    "Tracer",
    "UDPConnection",
    "UnhandledEventError",
    "__version__",
    "batch_spans",
    "entries",
    "get_current_span",
    "init",
    "meter",
    "shutdown",
    "span",
    "span_record_to_data",
    "trace",
]


def span(
    name: str,
    *,
    attributes: Mapping[str, str | int | float | bool] | None = None,
) -> Span:
    """Start a span on the default pipeline; use it as a context manager.

    Usage::

        with spanstream.span("process-batch") as s:
            s.set_attribute("batch_size", 32)
    """
    return _get_pipeline().tracer().start_span(name, attributes=attributes)


def meter() -> Meter:
    """Meter bound to the default pipeline.

    Label sets from ``Meter.labels`` are held until shutdown, so build them
    once at startup rather than per request.
    """
    return _get_pipeline().meter()
