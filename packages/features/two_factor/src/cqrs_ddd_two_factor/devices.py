"""Remember-device trust tokens.

A verified user may skip the second factor on a device for a bounded
period. The token returned by :meth:`DeviceTrustManager.remember` is the
credential; transporting it (usually as a cookie) is the caller's job.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .clock import SystemClock
from .config import RememberDeviceConfig
from .entropy import SecureRandomSource
from .formatting import mask_ip_address
from .models import DeviceInfo, DeviceSession, ensure_utc

if TYPE_CHECKING:
    from .ports import IClock, IDeviceSessionStore, IRandomSource

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32

_BROWSERS: tuple[tuple[str, str], ...] = (
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("Opera", "Opera"),
    ("Firefox/", "Firefox"),
    ("Chrome/", "Chrome"),
    ("Safari/", "Safari"),
)

_PLATFORMS: tuple[tuple[str, str], ...] = (
    ("Windows", "Windows"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Android", "Android"),
    ("Mac OS X", "macOS"),
    ("Macintosh", "macOS"),
    ("Linux", "Linux"),
)


def fingerprint(device: DeviceInfo) -> str:
    """Stable hash of the request headers that describe a browser.

    A secondary signal only; the token alone identifies a session.
    """
    parts = (
        device.user_agent or "",
        device.accept_language or "",
        device.accept_encoding or "",
        device.accept or "",
    )
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


def describe_device(user_agent: str | None) -> str:
    """Best-effort "<Browser> on <OS>" label for device lists."""
    if not user_agent:
        return "Unknown device"
    browser = next((name for marker, name in _BROWSERS if marker in user_agent), None)
    platform = next(
        (name for marker, name in _PLATFORMS if marker in user_agent), None
    )
    if browser and platform:
        return f"{browser} on {platform}"
    return browser or platform or "Unknown device"


@dataclass(frozen=True)
class DeviceStatistics:
    total: int
    active: int
    recently_used: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "recently_used": self.recently_used,
        }


def security_score(
    session: DeviceSession,
    current: DeviceInfo | None,
    now: datetime,
) -> int:
    """Diagnostic trust score in [0, 100]; not enforced.

    Deductions: age over 30 days (-20) or 14 days (-10); inactivity over
    7 days (-15) or 3 days (-5); IP mismatch (-25); user agent mismatch (-25).
    """
    score = 100

    age = now - ensure_utc(session.created_at)
    if age > timedelta(days=30):
        score -= 20
    elif age > timedelta(days=14):
        score -= 10

    last_seen = ensure_utc(session.last_used_at or session.created_at)
    idle = now - last_seen
    if idle > timedelta(days=7):
        score -= 15
    elif idle > timedelta(days=3):
        score -= 5

    if current is not None:
        if session.ip_address and current.ip_address != session.ip_address:
            score -= 25
        if session.user_agent and current.user_agent != session.user_agent:
            score -= 25

    return max(0, score)


class DeviceTrustManager:
    """Issues, validates and revokes remember-device tokens.

    Example:
        ```python
        devices = DeviceTrustManager(store=InMemoryDeviceSessionStore())

        token = await devices.remember("user-1", DeviceInfo(user_agent=ua))
        response.set_cookie("two_factor_remember", token)

        if await devices.is_remembered("user-1", request.cookies[...]):
            skip_second_factor()
        ```
    """

    def __init__(
        self,
        *,
        store: IDeviceSessionStore,
        config: RememberDeviceConfig | None = None,
        clock: IClock | None = None,
        random_source: IRandomSource | None = None,
    ) -> None:
        self.store = store
        self.config = config or RememberDeviceConfig()
        self.clock = clock or SystemClock()
        self.random_source = random_source or SecureRandomSource()

    def _new_token(self) -> str:
        return self.random_source.token_bytes(TOKEN_BYTES).hex()

    async def remember(
        self,
        user_id: str,
        device: DeviceInfo | None = None,
        duration: timedelta | None = None,
    ) -> str:
        """Store a new trusted-device session and return its token.

        A zero or negative ``duration`` yields a session that is never
        active.
        """
        device = device or DeviceInfo()
        if duration is None:
            duration = timedelta(minutes=self.config.duration_minutes)
        now = self.clock.now()
        token = self._new_token()
        session = DeviceSession(
            user_id=user_id,
            token=token,
            expires_at=now + duration,
            device_fingerprint=fingerprint(device),
            device_name=describe_device(device.user_agent),
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            created_at=now,
            last_used_at=now,
        )
        await self.store.add(session)
        logger.info(
            "Remembered device %r for user %s from %s",
            session.device_name,
            user_id,
            mask_ip_address(device.ip_address),
        )
        return token

    async def find_active(
        self, user_id: str, token: str | None
    ) -> DeviceSession | None:
        if not token:
            return None
        session = await self.store.find(user_id, token)
        if session is None or not session.is_active(self.clock.now()):
            return None
        return session

    async def is_remembered(self, user_id: str, token: str | None) -> bool:
        """True iff an active session matches exactly (user_id, token).

        Refreshes ``last_used_at`` on success. On False the caller should
        drop its stored token.
        """
        session = await self.find_active(user_id, token)
        if session is None:
            return False
        now = self.clock.now()
        await self.store.touch(session.id, now)
        session.last_used_at = now
        return True

    async def forget(self, user_id: str, token: str) -> bool:
        return await self.store.delete(user_id, token)

    async def forget_all(self, user_id: str) -> int:
        removed = await self.store.delete_all(user_id)
        if removed:
            logger.info("Forgot %d devices for user %s", removed, user_id)
        return removed

    async def cleanup_expired(self) -> int:
        """Delete expired sessions. Meant for a periodic job."""
        removed = await self.store.delete_expired(self.clock.now())
        if removed:
            logger.info("Removed %d expired device sessions", removed)
        return removed

    async def list_devices(
        self, user_id: str, *, active_only: bool = True
    ) -> list[DeviceSession]:
        now = self.clock.now()
        sessions = await self.store.list_for_user(user_id)
        if active_only:
            sessions = [s for s in sessions if s.is_active(now)]
        return sessions

    async def statistics(self, user_id: str) -> DeviceStatistics:
        now = self.clock.now()
        sessions = await self.store.list_for_user(user_id)
        recent_cutoff = now - timedelta(days=7)
        return DeviceStatistics(
            total=len(sessions),
            active=sum(1 for s in sessions if s.is_active(now)),
            recently_used=sum(
                1
                for s in sessions
                if s.last_used_at and ensure_utc(s.last_used_at) >= recent_cutoff
            ),
        )

    def security_score(
        self, session: DeviceSession, current: DeviceInfo | None = None
    ) -> int:
        return security_score(session, current, self.clock.now())


__all__: list[str] = [
    "TOKEN_BYTES",
    "fingerprint",
    "describe_device",
    "security_score",
    "DeviceStatistics",
    "DeviceTrustManager",
]
