"""OpenTelemetry spans for two-factor operations.

No-op when ``opentelemetry`` is not installed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator

_logger = logging.getLogger(__name__)

# Try to import OpenTelemetry (optional dependency)
try:
    from opentelemetry import trace
    from opentelemetry.trace import Status, StatusCode

    HAS_OTEL = True
except ImportError:
    HAS_OTEL = False
    trace = None
    Status = None
    StatusCode = None


class _TracerRegistry:
    """Lazy tracer initialization."""

    def __init__(self) -> None:
        self._tracer = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if HAS_OTEL and trace:
            self._tracer = trace.get_tracer("cqrs-ddd-two-factor")
        self._initialized = True

    @property
    def tracer(self) -> Any:
        self._ensure_initialized()
        return self._tracer


_registry = _TracerRegistry()


class TwoFactorTracing:
    """Span helpers around manager operations."""

    @staticmethod
    @contextmanager
    def span(
        operation: str,
        *,
        user_id: str | None = None,
        method: str | None = None,
    ) -> Generator[Any, None, None]:
        """Open a ``two_factor.<operation>`` span.

        Yields:
            Span object or None if tracing is disabled.
        """
        tracer = _registry.tracer
        if not tracer:
            yield None
            return

        with tracer.start_as_current_span(f"two_factor.{operation}") as span:
            try:
                span.set_attribute("two_factor.operation", operation)
                if user_id:
                    span.set_attribute("two_factor.user_id", user_id)
                if method:
                    span.set_attribute("two_factor.method", method)
                yield span
            except Exception as e:
                if Status and StatusCode:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                raise


__all__: list[str] = ["TwoFactorTracing", "HAS_OTEL"]
