"""Core types: event records, span identity, and exported span data."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from spanstream._attributes import EMPTY_ATTRIBUTES, AttributeMap, KeyValue, Mutator

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16


class EventType(enum.Enum):
    """Kind of event carried through the pipeline."""

    START_SPAN = "start_span"
    END_SPAN = "end_span"
    FINISH_SPAN = "end_span"
    ADD_EVENT = "add_event"
    NEW_SCOPE = "new_scope"
    MODIFY_ATTR = "modify_attr"
    SET_STATUS = "set_status"
    SET_NAME = "set_name"
    SINGLE_METRIC = "single_metric"
    BATCH_METRIC = "batch_metric"


class SpanStatus(enum.Enum):
    """Status of a span."""

    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class SpanContext:
    """Identity of a span across process boundaries."""

    trace_id: str
    span_id: str
    trace_flags: int = 0

    def has_trace_id(self) -> bool:
        return bool(self.trace_id) and self.trace_id != _ZERO_TRACE_ID

    def has_span_id(self) -> bool:
        return bool(self.span_id) and self.span_id != _ZERO_SPAN_ID

    def is_valid(self) -> bool:
        return self.has_trace_id() and self.has_span_id()

    @property
    def is_sampled(self) -> bool:
        return bool(self.trace_flags & 0x01)


@dataclass(frozen=True)
class ScopeID:
    """A point in the attribute chain: the owning event plus a span context."""

    event_id: int = 0
    span_context: SpanContext | None = None

    def has_trace_id(self) -> bool:
        return self.span_context is not None and self.span_context.has_trace_id()


ROOT_SCOPE = ScopeID()


@dataclass(frozen=True)
class Measurement:
    """One recorded metric value."""

    name: str
    value: float


@dataclass(frozen=True)
class Event:
    """A raw event as emitted by producers.

    ``sequence`` and ``time_ns`` are left at zero by producers and filled in
    by ``ObserverRegistry.record``.
    """

    type: EventType
    scope: ScopeID = ROOT_SCOPE
    parent: ScopeID = ROOT_SCOPE
    sequence: int = 0
    time_ns: int = 0
    entries: AttributeMap | None = None
    context_span: SpanContext | None = None

    attribute: KeyValue | None = None
    attributes: tuple[KeyValue, ...] = ()
    mutator: Mutator | None = None
    mutators: tuple[Mutator, ...] = ()
    string: str = ""
    status: SpanStatus = SpanStatus.UNSET
    measurement: Measurement | None = None
    measurements: tuple[Measurement, ...] = ()


@dataclass(frozen=True)
class ReaderEvent:
    """A resolved event handed to readers."""

    type: EventType
    time_ns: int
    sequence: int
    span_context: SpanContext | None = None
    entries: AttributeMap = EMPTY_ATTRIBUTES
    attributes: AttributeMap = EMPTY_ATTRIBUTES
    measurement: Measurement | None = None
    measurements: tuple[Measurement, ...] = ()

    parent: SpanContext | None = None
    parent_attributes: AttributeMap | None = None

    duration_ns: int = 0
    name: str = ""
    message: str = ""
    status: SpanStatus = SpanStatus.UNSET


@dataclass(frozen=True)
class SpanRecord:
    """All resolved events of one span, from START_SPAN through END_SPAN."""

    span_context: SpanContext
    events: tuple[ReaderEvent, ...]

    @property
    def start(self) -> ReaderEvent:
        return self.events[0]

    @property
    def end(self) -> ReaderEvent:
        return self.events[-1]


@dataclass(frozen=True)
class Resource:
    """Attributes describing the entity that produced a span."""

    attributes: AttributeMap = EMPTY_ATTRIBUTES

    @property
    def service_name(self) -> str | None:
        value = self.attributes.get("service.name")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class SpanEventData:
    """An event recorded inside a span."""

    name: str
    time_ns: int
    attributes: AttributeMap = EMPTY_ATTRIBUTES


@dataclass(frozen=True)
class SpanData:
    """Immutable snapshot of a finished span, ready for export."""

    span_id: str
    trace_id: str
    name: str
    status: SpanStatus
    start_time_ns: int
    end_time_ns: int
    duration_ms: float
    attributes: AttributeMap = EMPTY_ATTRIBUTES
    parent_span_id: str | None = None
    status_message: str | None = None
    events: tuple[SpanEventData, ...] = ()
    resource: Resource = field(default_factory=Resource)


@dataclass(frozen=True)
class Process:
    """Service name and resource tags shared by every span in a batch."""

    service_name: str
    tags: tuple[KeyValue, ...] = ()


@dataclass
class Batch:
    """Spans grouped under one process."""

    process: Process
    spans: list[SpanData] = field(default_factory=list)
