"""Context propagation for the active span and correlation entries."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING

from spanstream._attributes import EMPTY_ATTRIBUTES, AttributeMap, AttributeValue

if TYPE_CHECKING:
    from spanstream._tracer import Span

_current_span: ContextVar[Span | None] = ContextVar("_current_span", default=None)
_current_entries: ContextVar[AttributeMap] = ContextVar(
    "_current_entries", default=EMPTY_ATTRIBUTES
)


def get_current_span() -> Span | None:
    """Return the active span in the current context, or None."""
    return _current_span.get()


def set_current_span(span: Span | None) -> Token[Span | None]:
    """Set the active span and return a token for later restoration."""
    return _current_span.set(span)


def get_entries() -> AttributeMap:
    """Correlation entries attached to events recorded in this context."""
    return _current_entries.get()


@contextlib.contextmanager
def entries(**values: AttributeValue) -> Iterator[AttributeMap]:
    """Add correlation entries for the duration of the block.

    Usage::

        with spanstream.entries(tenant="acme"):
            with tracer.start_span("request"):
                ...
    """
    merged = _current_entries.get().merge(values)
    token = _current_entries.set(merged)
    try:
        yield merged
    finally:
        _current_entries.reset(token)
