"""@trace decorator for wrapping functions in spans."""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar, overload

F = TypeVar("F", bound=Callable[..., Any])


@overload
def trace(func: F) -> F: ...


@overload
def trace(*, name: str | None = None) -> Callable[[F], F]: ...


def trace(
    func: F | None = None,
    *,
    name: str | None = None,
) -> F | Callable[[F], F]:
    """Decorator that wraps a function call in a span of the default pipeline.

    Can be used with or without arguments::

        @trace
        def handle_request(): ...

        @trace(name="custom")
        def call_service(): ...
    """

    def decorator(fn: F) -> F:
        span_name = name or fn.__qualname__

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            from spanstream._sdk import _get_pipeline

            with _get_pipeline().tracer().start_span(span_name):
                return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    if func is not None:
        return decorator(func)
    return decorator
