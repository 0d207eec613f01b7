"""Observer registry: copy-on-write fan-out of recorded events."""

from __future__ import annotations

import dataclasses
import itertools
import threading
import time
from collections.abc import Callable
from typing import Protocol

from spanstream._types import Event


class Observer(Protocol):
    """Receives every event recorded through a registry."""

    def observe(self, event: Event) -> None: ...


class ObserverRegistry:
    """Set of observers shared by producers and consumers of one pipeline.

    Mutations publish a fresh tuple under a lock. ``record`` only reads the
    current tuple reference, so emitters never wait on registration changes
    and never see a half-updated set.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: tuple[Observer, ...] = ()
        self._sequence = itertools.count(1)

    def register(self, observer: Observer) -> None:
        with self._lock:
            self._observers = (*self._observers, observer)

    def unregister(self, observer: Observer) -> None:
        with self._lock:
            observers = list(self._observers)
            for i, registered in enumerate(observers):
                if registered is observer:
                    del observers[i]
                    self._observers = tuple(observers)
                    return

    def next_sequence(self) -> int:
        # count.__next__ is atomic under the GIL.
        return next(self._sequence)

    def record(self, event: Event) -> int:
        """Stamp ``event`` and deliver it to every registered observer.

        Returns the event's sequence number. Exceptions raised by an
        observer propagate to the caller.
        """
        observers = self._observers
        changes: dict[str, int] = {}
        if event.sequence == 0:
            changes["sequence"] = self.next_sequence()
        if event.time_ns == 0:
            changes["time_ns"] = time.time_ns()
        if changes:
            event = dataclasses.replace(event, **changes)  # type: ignore[arg-type]
        for observer in observers:
            observer.observe(event)
        return event.sequence

    def foreach(self, fn: Callable[[Observer], None]) -> None:
        for observer in self._observers:
            fn(observer)

    def __len__(self) -> int:
        return len(self._observers)
