"""Immutable attribute maps and the updates applied to them."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

AttributeValue = str | int | float | bool


@dataclass(frozen=True)
class KeyValue:
    """A single attribute."""

    key: str
    value: AttributeValue


class MutatorOp(enum.Enum):
    """How a mutator treats an existing key."""

    INSERT = "insert"  # only if absent
    UPDATE = "update"  # only if present
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class Mutator:
    """A conditional change to one key."""

    op: MutatorOp
    key: str
    value: AttributeValue | None = None


@dataclass(frozen=True)
class MapUpdate:
    """A set of changes, applied in field order by ``AttributeMap.apply``."""

    single_kv: KeyValue | None = None
    multi_kv: tuple[KeyValue, ...] = field(default_factory=tuple)
    single_mutator: Mutator | None = None
    multi_mutator: tuple[Mutator, ...] = field(default_factory=tuple)


def _mutate(values: dict[str, AttributeValue], mutator: Mutator) -> None:
    present = mutator.key in values
    if mutator.op is MutatorOp.DELETE:
        values.pop(mutator.key, None)
        return
    if mutator.value is None:
        raise ValueError(f"mutator {mutator.op.name} for {mutator.key!r} has no value")
    if mutator.op is MutatorOp.INSERT and present:
        return
    if mutator.op is MutatorOp.UPDATE and not present:
        return
    values[mutator.key] = mutator.value


class AttributeMap(Mapping[str, AttributeValue]):
    """Read-only mapping. Every update returns a new map."""

    __slots__ = ("_values", "_hash")

    def __init__(self, values: Mapping[str, AttributeValue] | None = None) -> None:
        self._values: dict[str, AttributeValue] = dict(values) if values else {}
        self._hash: int | None = None

    @classmethod
    def from_pairs(cls, pairs: Iterable[KeyValue]) -> AttributeMap:
        return cls({kv.key: kv.value for kv in pairs})

    def apply(self, update: MapUpdate) -> AttributeMap:
        """Return a copy of this map with ``update`` applied."""
        values = dict(self._values)
        if update.single_kv is not None:
            values[update.single_kv.key] = update.single_kv.value
        for kv in update.multi_kv:
            values[kv.key] = kv.value
        if update.single_mutator is not None:
            _mutate(values, update.single_mutator)
        for mutator in update.multi_mutator:
            _mutate(values, mutator)
        return AttributeMap(values)

    def merge(self, other: Mapping[str, AttributeValue]) -> AttributeMap:
        """Return a copy with ``other`` laid over this map."""
        if not other:
            return self
        values = dict(self._values)
        values.update(other)
        return AttributeMap(values)

    def to_pairs(self) -> tuple[KeyValue, ...]:
        """Pairs sorted by key."""
        return tuple(KeyValue(k, self._values[k]) for k in sorted(self._values))

    def __getitem__(self, key: str) -> AttributeValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._values.items()))
        return self._hash

    def __repr__(self) -> str:
        return f"AttributeMap({self._values!r})"


EMPTY_ATTRIBUTES = AttributeMap()
