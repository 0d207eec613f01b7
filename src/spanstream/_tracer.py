"""Producer API: spans that emit lifecycle events into a registry."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from contextvars import Token
from types import TracebackType
from typing import TYPE_CHECKING

from spanstream._attributes import AttributeValue, KeyValue, Mutator
from spanstream._context import _current_span, get_current_span, get_entries, set_current_span
from spanstream._types import ROOT_SCOPE, Event, EventType, ScopeID, SpanContext, SpanStatus

if TYPE_CHECKING:
    from spanstream._observer import ObserverRegistry

logger = logging.getLogger("spanstream.tracer")

_SAMPLED = 0x01


def _pairs(attributes: Mapping[str, AttributeValue] | None) -> tuple[KeyValue, ...]:
    if not attributes:
        return ()
    return tuple(KeyValue(k, v) for k, v in attributes.items())


class Span:
    """A live span. Every mutation is recorded as an event.

    Used as a context manager::

        with tracer.start_span("my-operation") as s:
            s.set_attribute("key", "value")

    Methods called after ``end`` are ignored.
    """

    def __init__(self, registry: ObserverRegistry, name: str, scope: ScopeID) -> None:
        if scope.span_context is None:
            raise ValueError("a span scope needs a span context")
        self._registry = registry
        self._name = name
        self._span_context = scope.span_context
        self._scope = scope
        self._status = SpanStatus.UNSET
        self._ended = False
        self._lock = threading.Lock()
        self._token: Token[Span | None] | None = None

    @property
    def span_context(self) -> SpanContext:
        return self._span_context

    @property
    def scope(self) -> ScopeID:
        """The latest point in this span's attribute chain."""
        return self._scope

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_recording(self) -> bool:
        return not self._ended

    def _emit(self, etype: EventType, *, advance: bool = False, **payload: object) -> None:
        with self._lock:
            if self._ended:
                logger.debug("Ignoring %s on ended span %s", etype.name, self._name)
                return
            seq = self._registry.record(
                Event(type=etype, scope=self._scope, entries=get_entries(), **payload)  # type: ignore[arg-type]
            )
            if advance:
                self._scope = ScopeID(seq, self._scope.span_context)

    def set_attribute(self, key: str, value: AttributeValue) -> None:
        self._emit(EventType.MODIFY_ATTR, advance=True, attribute=KeyValue(key, value))

    def set_attributes(self, attributes: Mapping[str, AttributeValue]) -> None:
        if attributes:
            self._emit(EventType.MODIFY_ATTR, advance=True, attributes=_pairs(attributes))

    def apply_mutators(self, *mutators: Mutator) -> None:
        """Apply conditional attribute changes (insert, update, upsert, delete)."""
        if len(mutators) == 1:
            self._emit(EventType.MODIFY_ATTR, advance=True, mutator=mutators[0])
        elif mutators:
            self._emit(EventType.MODIFY_ATTR, advance=True, mutators=tuple(mutators))

    def add_event(self, name: str, attributes: Mapping[str, AttributeValue] | None = None) -> None:
        self._emit(EventType.ADD_EVENT, string=name, attributes=_pairs(attributes))

    def set_status(self, status: SpanStatus, message: str | None = None) -> None:
        """Explicitly set span status."""
        self._emit(EventType.SET_STATUS, status=status, string=message or "")
        self._status = status

    def update_name(self, name: str) -> None:
        self._emit(EventType.SET_NAME, string=name)
        self._name = name

    def _record_child_start(self, record: Callable[[ScopeID], int]) -> int:
        """Run ``record`` with the scope a child should attach to.

        Holding the lock keeps ``end`` from purging that scope before the
        child's START_SPAN is recorded. An ended span is linked by context only.
        """
        with self._lock:
            if self._ended:
                return record(ScopeID(0, self._span_context))
            return record(self._scope)

    def end(self) -> None:
        with self._lock:
            if self._ended:
                return
            self._registry.record(
                Event(type=EventType.END_SPAN, scope=self._scope, entries=get_entries())
            )
            self._ended = True

    def __enter__(self) -> Span:
        self._token = set_current_span(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.set_status(SpanStatus.ERROR, str(exc_val) if exc_val else exc_type.__name__)
        elif self._status is SpanStatus.UNSET:
            self.set_status(SpanStatus.OK)
        self.end()

        if self._token is not None:
            _current_span.reset(self._token)
            self._token = None


class Tracer:
    """Starts spans whose events are recorded through ``registry``.

    Attributes given here form a shared scope that every span of this
    tracer starts from.
    """

    def __init__(
        self,
        registry: ObserverRegistry,
        *,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> None:
        self._registry = registry
        self._scope = ROOT_SCOPE
        if attributes:
            seq = registry.record(Event(type=EventType.NEW_SCOPE, attributes=_pairs(attributes)))
            self._scope = ScopeID(seq)

    @property
    def registry(self) -> ObserverRegistry:
        return self._registry

    def start_span(
        self,
        name: str,
        *,
        parent: Span | SpanContext | None = None,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        """Start a span.

        ``parent`` defaults to the current span. A ``SpanContext`` parent is
        treated as remote: it links the trace but contributes no attributes.
        """
        if parent is None:
            parent = get_current_span()

        if isinstance(parent, Span):
            trace_id = parent.span_context.trace_id
            flags = parent.span_context.trace_flags
        elif isinstance(parent, SpanContext):
            trace_id = parent.trace_id
            flags = parent.trace_flags
        else:
            trace_id = uuid.uuid4().hex
            flags = _SAMPLED

        sc = SpanContext(trace_id=trace_id, span_id=uuid.uuid4().hex[:16], trace_flags=flags)

        def record_start(parent_scope: ScopeID) -> int:
            return self._registry.record(
                Event(
                    type=EventType.START_SPAN,
                    scope=ScopeID(self._scope.event_id, sc),
                    parent=parent_scope,
                    entries=get_entries(),
                    attributes=_pairs(attributes),
                    string=name,
                )
            )

        if isinstance(parent, Span):
            seq = parent._record_child_start(record_start)
        elif isinstance(parent, SpanContext):
            seq = record_start(ScopeID(0, parent))
        else:
            seq = record_start(ROOT_SCOPE)
        return Span(self._registry, name, ScopeID(seq, sc))
