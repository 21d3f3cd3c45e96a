"""In-memory storage for development and testing.

WARNING: These implementations are NOT suitable for production use.
State lives in the process and will NOT be shared between workers.

Mutations are serialized with an ``asyncio.Lock`` per store so that the
compare-and-set in :meth:`InMemoryRecoveryCodeStore.mark_used_if_unused`
has exactly one winner.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import TYPE_CHECKING

from ..models import ensure_utc
from ..ports import (
    IAttemptStore,
    IDeviceSessionStore,
    IOtpChallengeStore,
    IRateLimitStore,
    IRecoveryCodeStore,
    ITwoFactorAuthStore,
)

if TYPE_CHECKING:
    from datetime import datetime

    from ..models import (
        AuthAttempt,
        DeviceSession,
        OtpChallenge,
        RecoveryCode,
        TwoFactorAuth,
        TwoFactorMethod,
    )


class InMemoryTwoFactorAuthStore(ITwoFactorAuthStore):
    """Records keyed by user id. Returns copies so callers cannot alias."""

    def __init__(self) -> None:
        self._records: dict[str, TwoFactorAuth] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> TwoFactorAuth | None:
        record = self._records.get(user_id)
        return copy.copy(record) if record else None

    async def save(self, record: TwoFactorAuth) -> None:
        async with self._lock:
            self._records[record.user_id] = copy.copy(record)

    async def delete(self, user_id: str) -> bool:
        async with self._lock:
            return self._records.pop(user_id, None) is not None

    def raw(self, user_id: str) -> TwoFactorAuth | None:
        """Stored record as persisted (encrypted secret). For tests."""
        return self._records.get(user_id)

    def clear_all(self) -> None:
        self._records.clear()


class InMemoryRecoveryCodeStore(IRecoveryCodeStore):
    def __init__(self) -> None:
        self._codes: dict[str, list[RecoveryCode]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def replace(self, user_id: str, codes: list[RecoveryCode]) -> None:
        async with self._lock:
            self._codes[user_id] = [copy.copy(c) for c in codes]

    async def list_unused(self, user_id: str) -> list[RecoveryCode]:
        return [copy.copy(c) for c in self._codes.get(user_id, []) if not c.is_used]

    async def list_all(self, user_id: str) -> list[RecoveryCode]:
        return [copy.copy(c) for c in self._codes.get(user_id, [])]

    async def mark_used_if_unused(
        self,
        code_id: str,
        *,
        used_at: datetime,
        used_ip: str | None = None,
        used_user_agent: str | None = None,
    ) -> bool:
        async with self._lock:
            for codes in self._codes.values():
                for code in codes:
                    if code.id != code_id:
                        continue
                    if code.is_used:
                        return False
                    code.used_at = used_at
                    code.used_ip = used_ip
                    code.used_user_agent = used_user_agent
                    return True
        return False

    async def count_unused(self, user_id: str) -> int:
        return sum(1 for c in self._codes.get(user_id, []) if not c.is_used)

    async def delete_all(self, user_id: str) -> int:
        async with self._lock:
            return len(self._codes.pop(user_id, []))

    async def delete_used_before(self, cutoff: datetime) -> int:
        removed = 0
        async with self._lock:
            for user_id, codes in list(self._codes.items()):
                kept = [
                    c
                    for c in codes
                    if c.used_at is None or ensure_utc(c.used_at) >= cutoff
                ]
                removed += len(codes) - len(kept)
                self._codes[user_id] = kept
        return removed


class InMemoryDeviceSessionStore(IDeviceSessionStore):
    def __init__(self) -> None:
        self._sessions: dict[str, DeviceSession] = {}
        self._lock = asyncio.Lock()

    async def add(self, session: DeviceSession) -> None:
        async with self._lock:
            self._sessions[session.id] = copy.copy(session)

    async def find(self, user_id: str, token: str) -> DeviceSession | None:
        for session in self._sessions.values():
            if session.user_id == user_id and session.token == token:
                return copy.copy(session)
        return None

    async def touch(self, session_id: str, last_used_at: datetime) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_used_at = last_used_at

    async def list_for_user(self, user_id: str) -> list[DeviceSession]:
        sessions = [s for s in self._sessions.values() if s.user_id == user_id]
        return [copy.copy(s) for s in sorted(sessions, key=lambda s: s.created_at)]

    async def delete(self, user_id: str, token: str) -> bool:
        async with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.user_id == user_id and session.token == token:
                    del self._sessions[session_id]
                    return True
        return False

    async def delete_all(self, user_id: str) -> int:
        async with self._lock:
            doomed = [k for k, s in self._sessions.items() if s.user_id == user_id]
            for session_id in doomed:
                del self._sessions[session_id]
        return len(doomed)

    async def delete_expired(self, now: datetime) -> int:
        async with self._lock:
            doomed = [k for k, s in self._sessions.items() if not s.is_active(now)]
            for session_id in doomed:
                del self._sessions[session_id]
        return len(doomed)


class InMemoryAttemptStore(IAttemptStore):
    def __init__(self) -> None:
        self._attempts: list[AuthAttempt] = []

    async def add(self, attempt: AuthAttempt) -> None:
        self._attempts.append(attempt)

    async def query(
        self,
        *,
        user_id: str | None = None,
        ip_address: str | None = None,
        method: TwoFactorMethod | None = None,
        since: datetime | None = None,
    ) -> list[AuthAttempt]:
        results = []
        for attempt in self._attempts:
            if user_id is not None and attempt.user_id != user_id:
                continue
            if ip_address is not None and attempt.ip_address != ip_address:
                continue
            if method is not None and attempt.method != method:
                continue
            if since is not None and ensure_utc(attempt.attempted_at) < since:
                continue
            results.append(attempt)
        return sorted(results, key=lambda a: a.attempted_at)

    async def delete_before(self, cutoff: datetime) -> int:
        before = len(self._attempts)
        self._attempts = [
            a for a in self._attempts if ensure_utc(a.attempted_at) >= cutoff
        ]
        return before - len(self._attempts)


class InMemoryOtpChallengeStore(IOtpChallengeStore):
    """In-memory OTP challenge store for TESTING ONLY.

    Codes are stored in plain text. Use the Redis-backed store in production.
    """

    def __init__(self) -> None:
        self._challenges: dict[str, OtpChallenge] = {}
        self._lock = asyncio.Lock()

    async def put(self, challenge: OtpChallenge) -> None:
        async with self._lock:
            self._challenges[challenge.user_id] = challenge

    async def get(self, user_id: str) -> OtpChallenge | None:
        async with self._lock:
            return self._challenges.get(user_id)

    async def delete(self, user_id: str) -> None:
        async with self._lock:
            self._challenges.pop(user_id, None)

    async def consume(self, user_id: str, code: str) -> bool:
        async with self._lock:
            challenge = self._challenges.get(user_id)
            if challenge is None or challenge.code != code:
                return False
            del self._challenges[user_id]
            return True


class InMemoryRateLimitStore(IRateLimitStore):
    """Hit timestamps per key. TTLs are not enforced; old hits are pruned
    whenever a key is read."""

    def __init__(self) -> None:
        self._hits: dict[str, list[datetime]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def hit(self, key: str, at: datetime, *, ttl_seconds: int) -> None:
        async with self._lock:
            self._hits[key].append(at)

    async def hits_since(self, key: str, since: datetime) -> list[datetime]:
        async with self._lock:
            fresh = sorted(h for h in self._hits.get(key, []) if h > since)
            if key in self._hits:
                self._hits[key] = fresh
            return list(fresh)

    async def clear(self, key: str) -> None:
        async with self._lock:
            self._hits.pop(key, None)


__all__: list[str] = [
    "InMemoryTwoFactorAuthStore",
    "InMemoryRecoveryCodeStore",
    "InMemoryDeviceSessionStore",
    "InMemoryAttemptStore",
    "InMemoryOtpChallengeStore",
    "InMemoryRateLimitStore",
]
