"""Background processor that drains finished spans to an exporter."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from spanstream._buffer import RingBuffer
from spanstream._types import SpanData

logger = logging.getLogger("spanstream.processor")

SpanHandler = Callable[[list[SpanData]], None]


def _noop_handler(spans: list[SpanData]) -> None:
    """Default handler that discards spans."""


class BackgroundProcessor:
    """Daemon thread that periodically drains spans from the buffer."""

    def __init__(
        self,
        buffer: RingBuffer[SpanData],
        *,
        batch_size: int = 512,
        flush_interval_ms: int = 5000,
        handler: SpanHandler = _noop_handler,
    ) -> None:
        self._buffer = buffer
        self._batch_size = batch_size
        self._flush_interval_s = flush_interval_ms / 1000.0
        self._handler = handler
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background drain loop."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="spanstream-processor", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal stop and drain everything left in the buffer."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        while self._flush():
            pass

    def flush(self) -> None:
        """Drain the buffer on the calling thread."""
        while self._flush():
            pass

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self._flush_interval_s):
            self._flush()

    def _flush(self) -> int:
        spans = self._buffer.drain(self._batch_size)
        if spans:
            try:
                self._handler(spans)
            except Exception:  # noqa: BLE001
                logger.debug("Span handler failed for %d spans", len(spans), exc_info=True)
        return len(spans)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
