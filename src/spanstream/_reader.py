"""Rebuilds span lifecycles and attribute scopes from the raw event stream."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from spanstream._attributes import EMPTY_ATTRIBUTES, AttributeMap, MapUpdate
from spanstream._errors import (
    InvariantError,
    ScopeNotFoundError,
    SpanNotFoundError,
    UnhandledEventError,
)
from spanstream._types import (
    Event,
    EventType,
    ReaderEvent,
    ScopeID,
    SpanContext,
    SpanStatus,
)

logger = logging.getLogger("spanstream.reader")

DEFAULT_MAX_SPANS = 16384

AbandonHandler = Callable[[SpanContext], None]


class Reader(Protocol):
    """Consumes resolved events."""

    def read(self, event: ReaderEvent) -> None: ...


@dataclass
class _ReaderScope:
    span: _ReaderSpan | None
    parent: int
    attributes: AttributeMap


@dataclass
class _ReaderSpan:
    name: str
    start_ns: int
    start_entries: AttributeMap
    span_context: SpanContext | None
    attributes: AttributeMap = EMPTY_ATTRIBUTES
    status: SpanStatus = SpanStatus.UNSET
    status_message: str = ""
    # A span is the root of its own scope chain.
    parent: int = field(default=0, init=False)
    # Event IDs of the span and of every scope it owns.
    owned: list[int] = field(default_factory=list, init=False)
    purged: bool = field(default=False, init=False)


class ReaderObserver:
    """Observer that resolves scope chains and forwards ``ReaderEvent``s.

    State is kept per event ID: a START_SPAN event stores a span, NEW_SCOPE
    and MODIFY_ATTR events store scopes linked to the scope they derive from.
    END_SPAN purges the span together with every scope it owns.

    Events are handled in arrival order. A scope or span that is referenced
    but unknown means the producer broke the ordering contract, or an event
    was dropped upstream, and raises an ``InvariantError``.

    Spans that can no longer finish are abandoned: their state is purged and
    ``on_abandon`` is called with their context. That happens when an
    END_SPAN fails to resolve, when more than ``max_spans`` spans are open
    (oldest first), and on ``clear``. Scopes that belong to no span, such as
    meter label sets, live until ``clear``.
    """

    def __init__(
        self,
        *readers: Reader,
        on_abandon: AbandonHandler | None = None,
        max_spans: int = DEFAULT_MAX_SPANS,
    ) -> None:
        if max_spans <= 0:
            raise ValueError(f"max_spans must be positive, got {max_spans}")
        self._readers = readers
        self._on_abandon = on_abandon
        self._max_spans = max_spans
        self._scopes: dict[int, _ReaderSpan | _ReaderScope] = {}
        # Open spans by START_SPAN event ID, oldest first.
        self._spans: dict[int, _ReaderSpan] = {}
        self._evicted = 0
        self._lock = threading.Lock()

    def observe(self, event: Event) -> None:
        try:
            read = self._resolve(event)
        except InvariantError:
            if event.type is EventType.END_SPAN:
                self._abandon_context(event.scope.span_context)
            raise
        if read is None:
            return
        try:
            for reader in self._readers:
                reader.read(read)
        finally:
            if event.type is EventType.END_SPAN:
                self._end_span(event.scope.event_id)

    def _resolve(self, event: Event) -> ReaderEvent | None:
        entries = event.entries if event.entries is not None else EMPTY_ATTRIBUTES
        etype = event.type

        if etype is EventType.START_SPAN:
            base, _ = self._read_scope(event.scope)
            attrs = base.apply(MapUpdate(multi_kv=event.attributes))
            span = _ReaderSpan(
                name=event.string,
                start_ns=event.time_ns,
                start_entries=entries,
                span_context=event.scope.span_context,
                attributes=attrs,
            )

            parent: SpanContext | None = None
            parent_attrs: AttributeMap | None = None
            if event.parent.event_id == 0 and event.parent.has_trace_id():
                # Remote parent: its attributes live in another process.
                parent = event.parent.span_context
            else:
                pattrs, pspan = self._read_scope(event.parent)
                if pspan is not None:
                    parent = pspan.span_context
                    parent_attrs = pattrs

            self._store_span(event.sequence, span)
            return ReaderEvent(
                type=EventType.START_SPAN,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=span.span_context,
                entries=entries,
                attributes=attrs,
                parent=parent,
                parent_attributes=parent_attrs,
                name=span.name,
            )

        if etype is EventType.END_SPAN:
            attrs, span = self._read_scope(event.scope)
            if span is None:
                raise SpanNotFoundError(f"span not found for scope {event.scope}")
            return ReaderEvent(
                type=EventType.END_SPAN,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=span.span_context,
                entries=span.start_entries,
                attributes=attrs,
                duration_ns=event.time_ns - span.start_ns,
                name=span.name,
                message=span.status_message,
                status=span.status,
            )

        if etype in (EventType.NEW_SCOPE, EventType.MODIFY_ATTR):
            base, owner = self._read_scope(event.scope)
            scope = _ReaderScope(
                span=owner,
                parent=event.scope.event_id,
                attributes=base.apply(
                    MapUpdate(
                        single_kv=event.attribute,
                        multi_kv=event.attributes,
                        single_mutator=event.mutator,
                        multi_mutator=event.mutators,
                    )
                ),
            )
            self._store(event.sequence, scope)
            if etype is EventType.NEW_SCOPE:
                return None
            return ReaderEvent(
                type=EventType.MODIFY_ATTR,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=owner.span_context if owner is not None else None,
                entries=owner.start_entries if owner is not None else entries,
                attributes=scope.attributes,
            )

        if etype is EventType.ADD_EVENT:
            attrs, span = self._read_scope(event.scope)
            return ReaderEvent(
                type=EventType.ADD_EVENT,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=span.span_context if span is not None else None,
                entries=entries,
                attributes=attrs.apply(MapUpdate(multi_kv=event.attributes)),
                message=event.string,
            )

        if etype is EventType.SINGLE_METRIC or etype is EventType.BATCH_METRIC:
            attrs, _ = self._read_scope(event.scope)
            return ReaderEvent(
                type=etype,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=event.context_span,
                entries=entries,
                attributes=attrs,
                measurement=event.measurement,
                measurements=tuple(event.measurements),
            )

        if etype is EventType.SET_STATUS:
            _, span = self._read_scope(event.scope)
            if span is not None:
                span.status = event.status
                span.status_message = event.string
            return ReaderEvent(
                type=EventType.SET_STATUS,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=span.span_context if span is not None else None,
                entries=entries,
                status=event.status,
                message=event.string,
            )

        if etype is EventType.SET_NAME:
            _, span = self._read_scope(event.scope)
            if span is not None:
                span.name = event.string
            return ReaderEvent(
                type=EventType.SET_NAME,
                time_ns=event.time_ns,
                sequence=event.sequence,
                span_context=span.span_context if span is not None else None,
                entries=entries,
                name=event.string,
            )

        raise UnhandledEventError(f"unhandled event type: {etype!r}")

    def _read_scope(self, scope: ScopeID) -> tuple[AttributeMap, _ReaderSpan | None]:
        """Return the accumulated attributes at ``scope`` and its owning span."""
        if scope.event_id == 0:
            return EMPTY_ATTRIBUTES, None
        with self._lock:
            record = self._scopes.get(scope.event_id)
        if record is None:
            raise ScopeNotFoundError(scope.event_id)
        if isinstance(record, _ReaderSpan):
            return record.attributes, record
        return record.attributes, record.span

    def _store(self, event_id: int, record: _ReaderScope) -> None:
        with self._lock:
            owner = record.span
            if owner is not None:
                if owner.purged:
                    return
                owner.owned.append(event_id)
            self._scopes[event_id] = record

    def _store_span(self, event_id: int, span: _ReaderSpan) -> None:
        evicted: _ReaderSpan | None = None
        count = 0
        with self._lock:
            span.owned.append(event_id)
            self._scopes[event_id] = span
            self._spans[event_id] = span
            if len(self._spans) > self._max_spans:
                evicted = self._purge_locked(next(iter(self._spans)))
                self._evicted += 1
                count = self._evicted
        if evicted is not None:
            if count == 1:
                logger.warning(
                    "More than %d spans open, abandoning the oldest", self._max_spans
                )
            self._abandon(evicted)

    def _purge_locked(self, start_id: int) -> _ReaderSpan | None:
        span = self._spans.pop(start_id, None)
        if span is None:
            return None
        span.purged = True
        for event_id in span.owned:
            self._scopes.pop(event_id, None)
        return span

    def _end_span(self, scope_id: int) -> None:
        with self._lock:
            record = self._scopes.get(scope_id)
            span = record.span if isinstance(record, _ReaderScope) else record
            if span is not None:
                self._purge_locked(span.owned[0])

    def _abandon_context(self, span_context: SpanContext | None) -> None:
        if span_context is None:
            return
        with self._lock:
            start_id = next(
                (sid for sid, s in self._spans.items() if s.span_context == span_context),
                None,
            )
            span = self._purge_locked(start_id) if start_id is not None else None
        if span is not None:
            logger.debug("Abandoning span %s after a failed END_SPAN", span_context.span_id)
            self._abandon(span)

    def _abandon(self, span: _ReaderSpan) -> None:
        if self._on_abandon is not None and span.span_context is not None:
            self._on_abandon(span.span_context)

    def clear(self) -> int:
        """Drop all state. Returns the number of open spans abandoned."""
        with self._lock:
            spans = list(self._spans.values())
            for span in spans:
                span.purged = True
            self._spans.clear()
            self._scopes.clear()
        for span in spans:
            self._abandon(span)
        return len(spans)

    def has_scope(self, event_id: int) -> bool:
        with self._lock:
            return event_id in self._scopes

    def scope_ids(self) -> list[int]:
        """Snapshot of the event IDs currently holding state."""
        with self._lock:
            return sorted(self._scopes)

    @property
    def span_count(self) -> int:
        """Number of spans started but not yet ended or abandoned."""
        with self._lock:
            return len(self._spans)

    @property
    def evicted(self) -> int:
        """Number of spans abandoned because too many were open."""
        return self._evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._scopes)
