"""Metrics and tracing helpers for two-factor operations.

Both integrate with Prometheus and OpenTelemetry when available and
degrade to no-ops otherwise.
"""

from __future__ import annotations

from .metrics import TwoFactorMetrics
from .tracing import HAS_OTEL, TwoFactorTracing

__all__: list[str] = [
    "TwoFactorMetrics",
    "TwoFactorTracing",
    "HAS_OTEL",
]
