"""Attempt audit trail.

Every verification, setup confirmation and code challenge is appended to
the attempt log. Submitted codes are stored only as SHA-256 digests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .clock import SystemClock
from .codes import hash_code
from .models import AttemptType, AuthAttempt, FailureReason, TwoFactorMethod

if TYPE_CHECKING:
    from datetime import datetime

    from .models import DeviceInfo
    from .ports import IAttemptStore, IClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptStatistics:
    """Aggregate over a set of attempts."""

    total: int
    successful: int
    failed: int
    success_rate: float
    failure_reasons: dict[str, int] = field(default_factory=dict)
    unique_ips: int = 0
    unique_users: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "failure_reasons": dict(self.failure_reasons),
            "unique_ips": self.unique_ips,
            "unique_users": self.unique_users,
        }


def summarize(attempts: list[AuthAttempt]) -> AttemptStatistics:
    successful = sum(1 for a in attempts if a.successful)
    total = len(attempts)
    reasons: dict[str, int] = {}
    for attempt in attempts:
        if attempt.failure_reason is not None:
            key = attempt.failure_reason.value
            reasons[key] = reasons.get(key, 0) + 1
    return AttemptStatistics(
        total=total,
        successful=successful,
        failed=total - successful,
        success_rate=round(successful / total * 100, 2) if total else 0.0,
        failure_reasons=reasons,
        unique_ips=len({a.ip_address for a in attempts if a.ip_address}),
        unique_users=len({a.user_id for a in attempts if a.user_id}),
    )


class AttemptLog:
    """Append-only attempt recorder with reporting helpers."""

    def __init__(self, *, store: IAttemptStore, clock: IClock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    async def record(
        self,
        *,
        user_id: str | None,
        method: TwoFactorMethod,
        attempt_type: AttemptType,
        successful: bool,
        code: str | None = None,
        failure_reason: FailureReason | None = None,
        device: DeviceInfo | None = None,
    ) -> AuthAttempt:
        attempt = AuthAttempt(
            user_id=user_id,
            method=method,
            type=attempt_type,
            successful=successful,
            failure_reason=None if successful else failure_reason,
            code_hash=hash_code(code) if code else None,
            code_length=len(code) if code else None,
            session_id=device.session_id if device else None,
            ip_address=device.ip_address if device else None,
            user_agent=device.user_agent if device else None,
            attempted_at=self.clock.now(),
        )
        await self.store.add(attempt)
        return attempt

    def _since(self, days: int) -> datetime:
        return self.clock.now() - timedelta(days=days)

    async def user_statistics(
        self, user_id: str, days: int = 30
    ) -> AttemptStatistics:
        attempts = await self.store.query(user_id=user_id, since=self._since(days))
        return summarize(attempts)

    async def ip_statistics(
        self, ip_address: str, days: int = 30
    ) -> AttemptStatistics:
        return summarize(
            await self.store.query(ip_address=ip_address, since=self._since(days))
        )

    async def global_statistics(self, days: int = 30) -> AttemptStatistics:
        return summarize(await self.store.query(since=self._since(days)))

    async def method_statistics(
        self, days: int = 30
    ) -> dict[str, AttemptStatistics]:
        """Per-method breakdown, keyed by method value."""
        attempts = await self.store.query(since=self._since(days))
        by_method: dict[str, list[AuthAttempt]] = {}
        for attempt in attempts:
            by_method.setdefault(attempt.method.value, []).append(attempt)
        return {method: summarize(items) for method, items in by_method.items()}

    async def recent_failures(self, user_id: str, minutes: int = 15) -> int:
        since = self.clock.now() - timedelta(minutes=minutes)
        attempts = await self.store.query(user_id=user_id, since=since)
        return sum(1 for a in attempts if not a.successful)

    async def prune(self, older_than_days: int = 90) -> int:
        """Delete attempts older than the retention period."""
        deleted = await self.store.delete_before(self._since(older_than_days))
        if deleted:
            logger.info("Pruned %d two-factor attempts", deleted)
        return deleted


__all__: list[str] = ["AttemptStatistics", "AttemptLog", "summarize"]
