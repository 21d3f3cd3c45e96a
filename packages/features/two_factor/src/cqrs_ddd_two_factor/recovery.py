"""Recovery codes service.

Generates and validates single-use recovery codes that users can use
when they lose access to their primary second factor.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .clock import SystemClock
from .config import RecoveryCodeConfig
from .entropy import SecureRandomSource
from .hasher import CodeHasher
from .models import RecoveryCode, ensure_utc

if TYPE_CHECKING:
    from .ports import IClock, IRandomSource, IRecoveryCodeStore

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Z0-9]")

MIN_CODE_LENGTH = 6
MAX_CODE_LENGTH = 20


@dataclass(frozen=True)
class RecoveryCodeStatistics:
    """Usage summary of a user's current batch."""

    total: int
    used: int
    unused: int
    usage_percentage: float
    recently_used: int
    needs_regeneration: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "used": self.used,
            "unused": self.unused,
            "usage_percentage": self.usage_percentage,
            "recently_used": self.recently_used,
            "needs_regeneration": self.needs_regeneration,
        }


class RecoveryCodeService:
    """Recovery code lifecycle: generate, verify once, regenerate.

    Only hashes are persisted. Plaintext codes are returned once from
    :meth:`generate` and cannot be retrieved again.

    Example:
        ```python
        service = RecoveryCodeService(store=InMemoryRecoveryCodeStore())

        codes = await service.generate("user-123")
        print(f"Save these codes: {codes}")

        # Later, when the user lost their device
        if await service.verify("user-123", user_code):
            pass
        ```
    """

    # Excludes visually ambiguous characters: 0, O, 1, I
    ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"

    def __init__(
        self,
        *,
        store: IRecoveryCodeStore,
        config: RecoveryCodeConfig | None = None,
        hasher: CodeHasher | None = None,
        clock: IClock | None = None,
        random_source: IRandomSource | None = None,
    ) -> None:
        self.store = store
        self.config = config or RecoveryCodeConfig()
        self.hasher = hasher or CodeHasher(
            algorithm=self.config.hash_algorithm, rounds=self.config.hash_rounds
        )
        self.clock = clock or SystemClock()
        self.random_source = random_source or SecureRandomSource()

    # ── formatting ────────────────────────────────────────────────

    @staticmethod
    def clean(code: str) -> str:
        """Uppercase and drop separators ("abcd-2345-ef" -> "ABCD2345EF")."""
        return _NON_ALNUM.sub("", (code or "").upper())

    @staticmethod
    def format(code: str) -> str:
        """Dash-separated groups of 4 for codes of 8+ characters."""
        if len(code) < 8:
            return code
        return "-".join(code[i : i + 4] for i in range(0, len(code), 4))

    def looks_like_recovery_code(self, code: str) -> bool:
        """Whether the cleaned length matches the configured code length."""
        return len(self.clean(code)) == self.config.length

    @classmethod
    def validate_format(cls, code: str) -> bool:
        cleaned = cls.clean(code)
        return MIN_CODE_LENGTH <= len(cleaned) <= MAX_CODE_LENGTH

    def _generate_code(self) -> str:
        return "".join(
            self.random_source.choice(self.ALPHABET) for _ in range(self.config.length)
        )

    # ── lifecycle ─────────────────────────────────────────────────

    async def generate(self, user_id: str, count: int | None = None) -> list[str]:
        """Replace the user's batch with ``count`` fresh codes.

        Returns:
            Formatted plaintext codes. Show once, then discard.
        """
        count = count or self.config.count
        now = self.clock.now()
        plaintext: list[str] = []
        records: list[RecoveryCode] = []
        seen: set[str] = set()
        while len(plaintext) < count:
            code = self._generate_code()
            if code in seen:
                continue
            seen.add(code)
            plaintext.append(self.format(code))
            records.append(
                RecoveryCode(
                    user_id=user_id,
                    code_hash=self.hasher.hash(code),
                    created_at=now,
                )
            )

        await self.store.replace(user_id, records)
        logger.info("Generated %d recovery codes for user %s", count, user_id)
        return plaintext

    async def regenerate(self, user_id: str, count: int | None = None) -> list[str]:
        """Discard every existing code (used or not) and issue a new batch."""
        return await self.generate(user_id, count)

    async def verify(
        self,
        user_id: str,
        code: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        """Consume a recovery code (single-use).

        Scans the user's unused codes; the first hash match is marked used
        through an atomic compare-and-set. If a concurrent request marked it
        first, this call fails closed.
        """
        cleaned = self.clean(code)
        if not self.validate_format(cleaned):
            return False

        for candidate in await self.store.list_unused(user_id):
            if not self.hasher.verify(candidate.code_hash, cleaned):
                continue
            marked = await self.store.mark_used_if_unused(
                candidate.id,
                used_at=self.clock.now(),
                used_ip=ip_address,
                used_user_agent=user_agent,
            )
            if not marked:
                logger.info("Recovery code for user %s was already used", user_id)
            return marked
        return False

    async def remaining(self, user_id: str) -> int:
        return await self.store.count_unused(user_id)

    async def delete_all(self, user_id: str) -> int:
        return await self.store.delete_all(user_id)

    async def statistics(self, user_id: str) -> RecoveryCodeStatistics:
        codes = await self.store.list_all(user_id)
        used = [c for c in codes if c.used_at is not None]
        total = len(codes)
        unused = total - len(used)
        recent_cutoff = self.clock.now() - timedelta(days=7)
        return RecoveryCodeStatistics(
            total=total,
            used=len(used),
            unused=unused,
            usage_percentage=round(len(used) / total * 100, 2) if total else 0.0,
            recently_used=sum(
                1 for c in used if c.used_at and ensure_utc(c.used_at) >= recent_cutoff
            ),
            needs_regeneration=unused <= self.config.regenerate_threshold,
        )

    async def cleanup_used(self, older_than_days: int = 30) -> int:
        """Delete codes that were used more than ``older_than_days`` ago."""
        cutoff = self.clock.now() - timedelta(days=older_than_days)
        deleted = await self.store.delete_used_before(cutoff)
        if deleted:
            logger.info("Removed %d used recovery codes", deleted)
        return deleted


__all__: list[str] = ["RecoveryCodeService", "RecoveryCodeStatistics"]
