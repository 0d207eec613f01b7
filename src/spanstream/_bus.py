"""Bounded event buffer drained by a dedicated consumer thread."""

from __future__ import annotations

import logging
import queue
import threading

from spanstream._observer import Observer
from spanstream._types import Event

logger = logging.getLogger("spanstream.bus")

_STOP = object()
_CLOSE_POLL_S = 0.1


class EventBuffer:
    """An ``Observer`` that queues events and replays them on its own thread.

    Producers are never blocked: when the queue is full the event is dropped
    and counted. Wrapped observers see events in the order they were
    accepted.
    """

    def __init__(self, size: int, *observers: Observer) -> None:
        if size <= 0:
            raise ValueError(f"buffer size must be positive, got {size}")
        self._queue: queue.Queue[object] = queue.Queue(maxsize=size)
        self._observers = observers
        self._dropped = 0
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(
            target=self._run, name="spanstream-event-buffer", daemon=True
        )
        self._thread.start()

    def observe(self, event: Event) -> None:
        """Queue ``event`` without blocking. Drops it if the buffer is full."""
        with self._lock:
            if not self._closed:
                try:
                    self._queue.put_nowait(event)
                    return
                except queue.Full:
                    pass
            self._dropped += 1
            dropped = self._dropped
        if dropped == 1:
            logger.warning("Event buffer full, dropping events")

    def close(self) -> None:
        """Deliver everything already accepted, then stop the consumer thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        while True:
            try:
                self._queue.put(_STOP, timeout=_CLOSE_POLL_S)
                break
            except queue.Full:
                if not self._thread.is_alive():
                    logger.error("Event buffer consumer died, %d events lost", len(self))
                    return
        self._thread.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._dispatch(item)  # type: ignore[arg-type]

    def _dispatch(self, event: Event) -> None:
        for observer in self._observers:
            try:
                observer.observe(event)
            except Exception:  # noqa: BLE001
                logger.error(
                    "Observer %r failed on %s event %d",
                    observer,
                    event.type.name,
                    event.sequence,
                    exc_info=True,
                )

    @property
    def dropped(self) -> int:
        """Number of events dropped because the buffer was full or closed."""
        return self._dropped

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def __len__(self) -> int:
        return self._queue.qsize()
