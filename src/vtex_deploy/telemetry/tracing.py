"""OpenTelemetry tracing utilities for vtex-deploy.

Provides the ``@traced`` decorator and the ``create_span()`` context
manager. Span errors are recorded with sanitized messages so auth tokens
echoed by the platform CLI never reach a trace backend.

The ``@traced`` decorator supports:
- ``name``: Custom span name (default: function name).
- ``attributes``: Static attributes applied to every invocation.
- ``attributes_fn``: Callable receiving the decorated function's
  ``*args, **kwargs`` and returning dynamic span attributes. Exceptions
  inside ``attributes_fn`` are logged at WARNING and never propagate.
"""

from __future__ import annotations

import functools
import threading
from collections.abc import Callable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar, overload

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, Tracer

from vtex_deploy.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

INSTRUMENTATION_SCOPE = "vtex_deploy"

# Every vtex-deploy span shares one instrumentation scope.
_tracer: Tracer | None = None
_tracer_lock = threading.Lock()


def get_tracer() -> Tracer:
    """Tracer for vtex-deploy spans.

    Resolved from the global provider on first use, so a provider installed
    after import still receives spans. When the provider cannot hand out a
    tracer a NoOpTracer is cached until ``reset_tracer()``.
    """
    global _tracer
    tracer = _tracer
    if tracer is not None:
        return tracer
    with _tracer_lock:
        if _tracer is None:
            try:
                _tracer = trace.get_tracer(INSTRUMENTATION_SCOPE)
            except Exception:
                logger.warning("tracer_unavailable", exc_info=True)
                _tracer = trace.NoOpTracer()
        return _tracer


def set_tracer(tracer: Tracer | None) -> None:
    """Replace the cached tracer; ``None`` resolves it again on next use (for testing)."""
    global _tracer
    with _tracer_lock:
        _tracer = tracer


def reset_tracer() -> None:
    set_tracer(None)


def _record_error(span: Span, error: Exception) -> None:
    sanitized = sanitize_error_message(str(error))
    span.set_status(Status(StatusCode.ERROR, sanitized))
    span.set_attribute("exception.type", type(error).__name__)
    span.set_attribute("exception.message", sanitized)


@overload
def traced(func: Callable[P, R]) -> Callable[P, R]: ...


@overload
def traced(
    *,
    name: str | None = None,
    attributes: dict[str, str] | None = None,
    attributes_fn: Callable[..., dict[str, Any]] | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]: ...


def traced(
    func: Callable[P, R] | None = None,
    *,
    name: str | None = None,
    attributes: dict[str, str] | None = None,
    attributes_fn: Callable[..., dict[str, Any]] | None = None,
) -> Callable[P, R] | Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator to trace function execution with an OpenTelemetry span.

    Can be used with or without arguments:
        @traced
        def my_function(): ...

        @traced(name="vtex_deploy.vtex.install", attributes={"vtex.command": "install"})
        def my_function(): ...

    Examples:
        >>> @traced
        ... def derive() -> str:
        ...     return "1.0.0"
        >>> derive()
        '1.0.0'
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        span_name = name if name is not None else fn.__name__

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            tracer = get_tracer()
            with tracer.start_as_current_span(
                span_name,
                record_exception=False,
                set_status_on_exception=False,
            ) as span:
                if attributes:
                    for key, value in attributes.items():
                        span.set_attribute(key, value)
                if attributes_fn is not None:
                    try:
                        for key, value in attributes_fn(*args, **kwargs).items():
                            if value is not None:
                                span.set_attribute(key, value)
                    except Exception:
                        logger.warning("attributes_fn_failed", span=span_name, exc_info=True)
                try:
                    return fn(*args, **kwargs)
                except Exception as e:
                    _record_error(span, e)
                    raise

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span as a context manager.

    Nested calls create parent-child relationships automatically.

    Examples:
        >>> with create_span("vtex_deploy.deploy.qa", attributes={"deploy.id": "d1"}) as span:
        ...     with create_span("vtex_deploy.step.authenticate"):
        ...         pass
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            _record_error(span, e)
            raise


__all__ = ["create_span", "get_tracer", "reset_tracer", "set_tracer", "traced"]
