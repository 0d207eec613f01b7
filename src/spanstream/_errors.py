"""Exception hierarchy."""

from __future__ import annotations

from collections.abc import Sequence


class SpanstreamError(Exception):
    """Base class for all spanstream errors."""


class InvariantError(SpanstreamError, RuntimeError):
    """The event ordering contract was broken upstream. Not recoverable."""


class ScopeNotFoundError(InvariantError):
    """An event referenced a scope that was never recorded or already purged."""

    def __init__(self, event_id: int) -> None:
        super().__init__(f"scope not found: {event_id}")
        self.event_id = event_id


class SpanNotFoundError(InvariantError):
    """A span ended without ever having started."""


class UnhandledEventError(InvariantError):
    """An event type the reconstructor has no rule for."""


class NotConnectedError(SpanstreamError, ConnectionError):
    """No socket is established yet."""


class PacketTooLargeError(SpanstreamError, ValueError):
    """A single payload does not fit in one packet."""

    def __init__(self, index: int, size: int, max_size: int) -> None:
        super().__init__(
            f"payload {index} is {size} bytes, exceeds max packet size {max_size}"
        )
        self.index = index
        self.size = size
        self.max_size = max_size


class MultipleErrors(SpanstreamError):
    """Errors collected while processing a group of items."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) occurred: {details}")


class ExportTimeoutError(SpanstreamError, TimeoutError):
    """The caller's deadline passed before the export started."""
