"""Assembles resolved events into finished spans and groups them for export."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from spanstream._types import (
    Batch,
    EventType,
    Process,
    ReaderEvent,
    Resource,
    SpanContext,
    SpanData,
    SpanEventData,
    SpanRecord,
)

logger = logging.getLogger("spanstream.spans")

SpanRecordHandler = Callable[[SpanRecord], None]

_SPAN_SCOPED = frozenset(
    {
        EventType.MODIFY_ATTR,
        EventType.ADD_EVENT,
        EventType.SET_STATUS,
        EventType.SET_NAME,
    }
)


class SpanAssembler:
    """``Reader`` that collects each span's events and emits one ``SpanRecord``.

    A span's events are owned here until END_SPAN arrives; the emitted
    record is immutable. Events for spans that never started here are
    ignored. Spans the reader abandons are dropped through ``discard``.
    """

    def __init__(self, handler: SpanRecordHandler) -> None:
        self._handler = handler
        self._open: dict[SpanContext, list[ReaderEvent]] = {}

    def read(self, event: ReaderEvent) -> None:
        sc = event.span_context
        if sc is None:
            return
        if event.type is EventType.START_SPAN:
            self._open[sc] = [event]
        elif event.type is EventType.END_SPAN:
            events = self._open.pop(sc, None)
            if events is None:
                logger.debug("END_SPAN for untracked span %s", sc.span_id)
                return
            events.append(event)
            self._handler(SpanRecord(span_context=sc, events=tuple(events)))
        elif event.type in _SPAN_SCOPED:
            events = self._open.get(sc)
            if events is not None:
                events.append(event)

    def discard(self, span_context: SpanContext) -> None:
        """Forget an open span that will never end."""
        if self._open.pop(span_context, None) is not None:
            logger.debug("Discarded unfinished span %s", span_context.span_id)

    @property
    def open_spans(self) -> int:
        return len(self._open)


def span_record_to_data(record: SpanRecord, resource: Resource) -> SpanData:
    """Flatten a ``SpanRecord`` into exportable ``SpanData``."""
    start = record.start
    end = record.end
    events = tuple(
        SpanEventData(name=ev.message, time_ns=ev.time_ns, attributes=ev.attributes)
        for ev in record.events
        if ev.type is EventType.ADD_EVENT
    )

    return SpanData(
        span_id=record.span_context.span_id,
        trace_id=record.span_context.trace_id,
        name=end.name,
        status=end.status,
        start_time_ns=start.time_ns,
        end_time_ns=end.time_ns,
        duration_ms=end.duration_ns / 1_000_000,
        attributes=end.attributes,
        parent_span_id=start.parent.span_id if start.parent is not None else None,
        status_message=end.message or None,
        events=events,
        resource=resource,
    )


def process_from_resource(resource: Resource, default_service_name: str) -> Process:
    """Resolve the service name and tags reported for ``resource``."""
    tags = tuple(kv for kv in resource.attributes.to_pairs() if kv.key != "service.name")
    return Process(
        service_name=resource.service_name or default_service_name,
        tags=tags,
    )


def batch_spans(spans: Iterable[SpanData | None], default_service_name: str) -> list[Batch]:
    """Group spans by resource, keeping first-seen order. ``None`` entries are skipped."""
    batches: dict[Resource, Batch] = {}
    for span in spans:
        if span is None:
            continue
        batch = batches.get(span.resource)
        if batch is None:
            batch = Batch(process=process_from_resource(span.resource, default_service_name))
            batches[span.resource] = batch
        batch.spans.append(span)
    return list(batches.values())
