"""Prometheus metrics for two-factor operations.

Metrics are created lazily on first use. Without ``prometheus_client``
installed every helper is a no-op.

Usage:
    ```python
    from cqrs_ddd_two_factor.observability import TwoFactorMetrics

    with TwoFactorMetrics.operation("verify", method="totp"):
        await manager.verify(user_id, code)

    TwoFactorMetrics.record_code_sent("sms", succeeded=True)
    ```
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from ..exceptions import TwoFactorError

_logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Generator

    from ..events import TwoFactorAuditEvent


class _TwoFactorMetricsRegistry:
    """Lazily initialized Prometheus collectors."""

    def __init__(self) -> None:
        self._histogram: Any = None
        self._counter: Any = None
        self._codes_sent: Any = None
        self._rate_limited: Any = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        try:
            from prometheus_client import Counter, Histogram

            self._histogram = Histogram(
                "two_factor_operation_duration_seconds",
                "Two-factor operation duration",
                ["operation", "method"],
            )
            self._counter = Counter(
                "two_factor_operations_total",
                "Two-factor operation count",
                ["operation", "method", "result"],
            )
            self._codes_sent = Counter(
                "two_factor_codes_sent_total",
                "One-time codes handed to a delivery provider",
                ["channel", "result"],
            )
            self._rate_limited = Counter(
                "two_factor_rate_limited_total",
                "Verification attempts rejected by the rate limiter",
            )
        except ImportError:
            _logger.debug("prometheus_client not available, metrics disabled")

        self._initialized = True

    @property
    def histogram(self) -> Any:
        self._ensure_initialized()
        return self._histogram

    @property
    def counter(self) -> Any:
        self._ensure_initialized()
        return self._counter

    @property
    def codes_sent(self) -> Any:
        self._ensure_initialized()
        return self._codes_sent

    @property
    def rate_limited(self) -> Any:
        self._ensure_initialized()
        return self._rate_limited


_registry = _TwoFactorMetricsRegistry()


class TwoFactorMetrics:
    """Helpers for recording two-factor metrics."""

    @staticmethod
    @contextmanager
    def operation(
        operation: str,
        *,
        method: str = "unknown",
    ) -> Generator[None, None, None]:
        """Time an operation and count its outcome.

        Expected rejections (invalid code, rate limit) count as ``rejected``,
        anything else raised counts as ``error``.
        """
        result = "success"
        start = time.monotonic()

        try:
            yield
        except TwoFactorError:
            result = "rejected"
            raise
        except Exception:
            result = "error"
            raise
        finally:
            duration = time.monotonic() - start

            if _registry.histogram:
                try:
                    _registry.histogram.labels(
                        operation=operation, method=method
                    ).observe(duration)
                except Exception:  # noqa: BLE001
                    _logger.debug("Failed to record histogram")

            if _registry.counter:
                try:
                    _registry.counter.labels(
                        operation=operation, method=method, result=result
                    ).inc()
                except Exception:  # noqa: BLE001
                    _logger.debug("Failed to record counter")

    @staticmethod
    def record_event(event: TwoFactorAuditEvent) -> None:
        """Count an audit event under its event type."""
        if not _registry.counter:
            return

        try:
            _registry.counter.labels(
                operation=event.event_type.value,
                method=event.method or "unknown",
                result="success" if event.success else "failure",
            ).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to record audit event metric")

    @staticmethod
    def record_code_sent(channel: str, *, succeeded: bool) -> None:
        if _registry.codes_sent:
            try:
                _registry.codes_sent.labels(
                    channel=channel, result="sent" if succeeded else "failed"
                ).inc()
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to record code delivery metric")

    @staticmethod
    def record_rate_limited() -> None:
        if _registry.rate_limited:
            try:
                _registry.rate_limited.inc()
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to record rate limit metric")


__all__: list[str] = ["TwoFactorMetrics"]
