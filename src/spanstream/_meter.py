"""Metric recording on top of the event registry."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from spanstream._attributes import AttributeMap, AttributeValue, KeyValue
from spanstream._context import get_current_span, get_entries
from spanstream._types import ROOT_SCOPE, Event, EventType, Measurement, ScopeID, SpanContext

if TYPE_CHECKING:
    from spanstream._observer import ObserverRegistry


@dataclass(frozen=True)
class LabelSet:
    """A registered label namespace. Create once and reuse."""

    scope: ScopeID
    labels: AttributeMap


def _current_span_context() -> SpanContext | None:
    span = get_current_span()
    return span.span_context if span is not None else None


class Meter:
    """Records measurements, tagged with label sets and the current span."""

    def __init__(self, registry: ObserverRegistry) -> None:
        self._registry = registry

    def labels(self, **labels: AttributeValue) -> LabelSet:
        """Register a label set for later measurements.

        Each call stores a scope in the pipeline's reader that lives until
        the pipeline shuts down. Create label sets once and reuse them;
        calling this per request grows memory without bound.
        """
        pairs = tuple(KeyValue(k, v) for k, v in labels.items())
        seq = self._registry.record(Event(type=EventType.NEW_SCOPE, attributes=pairs))
        return LabelSet(scope=ScopeID(seq), labels=AttributeMap(labels))

    def record(self, name: str, value: float, labels: LabelSet | None = None) -> int:
        """Record a single measurement. Returns its event sequence."""
        return self._registry.record(
            Event(
                type=EventType.SINGLE_METRIC,
                scope=labels.scope if labels is not None else ROOT_SCOPE,
                entries=get_entries(),
                context_span=_current_span_context(),
                measurement=Measurement(name, float(value)),
            )
        )

    def record_batch(
        self,
        measurements: Iterable[Measurement | tuple[str, float]],
        labels: LabelSet | None = None,
    ) -> int:
        """Record several measurements that share labels and a timestamp."""
        batch = tuple(
            m if isinstance(m, Measurement) else Measurement(m[0], float(m[1]))
            for m in measurements
        )
        return self._registry.record(
            Event(
                type=EventType.BATCH_METRIC,
                scope=labels.scope if labels is not None else ROOT_SCOPE,
                entries=get_entries(),
                context_span=_current_span_context(),
                measurements=batch,
            )
        )
