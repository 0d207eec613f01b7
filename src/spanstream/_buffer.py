"""Bounded holding area for finished spans awaiting export."""

from __future__ import annotations

import logging
from collections import deque
from typing import Generic, TypeVar

logger = logging.getLogger("spanstream.buffer")

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-size FIFO that overwrites its oldest entry when full.

    deque.append and deque.popleft are atomic under the GIL, which is enough
    for one writer (the event buffer's consumer thread) and one reader (the
    processor thread).
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize <= 0:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self._items: deque[T] = deque(maxlen=maxsize)
        self._maxsize = maxsize
        self._overwritten = 0

    def enqueue(self, item: T) -> None:
        if len(self._items) == self._maxsize:
            self._overwritten += 1
            if self._overwritten == 1:
                logger.warning("Span buffer full (%d), overwriting oldest spans", self._maxsize)
        self._items.append(item)

    def drain(self, max_items: int | None = None) -> list[T]:
        """Pop up to ``max_items`` entries, oldest first. ``None`` pops all."""
        limit = len(self._items) if max_items is None else max_items
        out: list[T] = []
        while len(out) < limit:
            try:
                out.append(self._items.popleft())
            except IndexError:
                break
        return out

    @property
    def drop_count(self) -> int:
        """Entries lost to overwriting."""
        return self._overwritten

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def __len__(self) -> int:
        return len(self._items)
