"""SQLAlchemy (async) stores for two-factor state.

Each call runs in its own ``session.begin()`` transaction. Driver errors
are wrapped in :class:`~cqrs_ddd_two_factor.exceptions.StorageError`.

Example:
    ```python
    engine = create_async_engine("postgresql+asyncpg://...")
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    auth_store = SQLAlchemyTwoFactorAuthStore(session_factory)
    recovery_store = SQLAlchemyRecoveryCodeStore(session_factory)
    ```
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import StorageError
from ..models import (
    AttemptType,
    AuthAttempt,
    DeviceSession,
    FailureReason,
    RecoveryCode,
    TwoFactorAuth,
    TwoFactorMethod,
    ensure_utc,
)
from ..ports import (
    IAttemptStore,
    IDeviceSessionStore,
    IRecoveryCodeStore,
    ITwoFactorAuthStore,
)
from .sql_models import (
    AuthAttemptModel,
    DeviceSessionModel,
    RecoveryCodeModel,
    TwoFactorAuthModel,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


class _SQLAlchemyStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error("Two-factor storage operation %r failed: %s", operation, e)
            raise StorageError(
                f"Two-factor storage operation {operation!r} failed"
            ) from e


# ═══════════════════════════════════════════════════════════════
# AUTH RECORDS
# ═══════════════════════════════════════════════════════════════


class SQLAlchemyTwoFactorAuthStore(_SQLAlchemyStore, ITwoFactorAuthStore):
    """``two_factor_auth`` rows, one per user. Secrets arrive encrypted."""

    @staticmethod
    def _to_domain(row: TwoFactorAuthModel) -> TwoFactorAuth:
        return TwoFactorAuth(
            user_id=row.user_id,
            method=TwoFactorMethod(row.method),
            enabled=row.enabled,
            secret=row.secret,
            phone_number=row.phone_number,
            confirmed_at=_utc(row.confirmed_at),
            backup_codes_generated_at=_utc(row.backup_codes_generated_at),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    async def get(self, user_id: str) -> TwoFactorAuth | None:
        async with self._transaction("get_auth") as session:
            row = await session.get(TwoFactorAuthModel, user_id)
            return self._to_domain(row) if row else None

    async def save(self, record: TwoFactorAuth) -> None:
        async with self._transaction("save_auth") as session:
            await session.merge(
                TwoFactorAuthModel(
                    user_id=record.user_id,
                    enabled=record.enabled,
                    method=record.method.value,
                    secret=record.secret,
                    phone_number=record.phone_number,
                    confirmed_at=record.confirmed_at,
                    backup_codes_generated_at=record.backup_codes_generated_at,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            )

    async def delete(self, user_id: str) -> bool:
        async with self._transaction("delete_auth") as session:
            result = await session.execute(
                delete(TwoFactorAuthModel).where(TwoFactorAuthModel.user_id == user_id)
            )
            return bool(result.rowcount)


# ═══════════════════════════════════════════════════════════════
# RECOVERY CODES
# ═══════════════════════════════════════════════════════════════


class SQLAlchemyRecoveryCodeStore(_SQLAlchemyStore, IRecoveryCodeStore):
    """``two_factor_recovery_codes`` rows.

    Marking a code used is a conditional
    ``UPDATE ... WHERE id = :id AND used_at IS NULL``; exactly one
    concurrent caller sees ``rowcount == 1``.
    """

    @staticmethod
    def _to_domain(row: RecoveryCodeModel) -> RecoveryCode:
        return RecoveryCode(
            id=row.id,
            user_id=row.user_id,
            code_hash=row.code_hash,
            created_at=ensure_utc(row.created_at),
            used_at=_utc(row.used_at),
            used_ip=row.used_ip,
            used_user_agent=row.used_user_agent,
        )

    async def replace(self, user_id: str, codes: list[RecoveryCode]) -> None:
        async with self._transaction("replace_recovery_codes") as session:
            await session.execute(
                delete(RecoveryCodeModel).where(RecoveryCodeModel.user_id == user_id)
            )
            session.add_all(
                RecoveryCodeModel(
                    id=code.id,
                    user_id=user_id,
                    code_hash=code.code_hash,
                    created_at=code.created_at,
                    used_at=code.used_at,
                    used_ip=code.used_ip,
                    used_user_agent=code.used_user_agent,
                )
                for code in codes
            )

    async def _list(self, user_id: str, *, unused_only: bool) -> list[RecoveryCode]:
        stmt = select(RecoveryCodeModel).where(RecoveryCodeModel.user_id == user_id)
        if unused_only:
            stmt = stmt.where(RecoveryCodeModel.used_at.is_(None))
        async with self._transaction("list_recovery_codes") as session:
            rows = await session.scalars(stmt.order_by(RecoveryCodeModel.created_at))
            return [self._to_domain(row) for row in rows]

    async def list_unused(self, user_id: str) -> list[RecoveryCode]:
        return await self._list(user_id, unused_only=True)

    async def list_all(self, user_id: str) -> list[RecoveryCode]:
        return await self._list(user_id, unused_only=False)

    async def mark_used_if_unused(
        self,
        code_id: str,
        *,
        used_at: datetime,
        used_ip: str | None = None,
        used_user_agent: str | None = None,
    ) -> bool:
        async with self._transaction("mark_recovery_code_used") as session:
            result = await session.execute(
                update(RecoveryCodeModel)
                .where(
                    RecoveryCodeModel.id == code_id,
                    RecoveryCodeModel.used_at.is_(None),
                )
                .values(
                    used_at=used_at,
                    used_ip=used_ip,
                    used_user_agent=used_user_agent,
                )
            )
            return result.rowcount == 1

    async def count_unused(self, user_id: str) -> int:
        async with self._transaction("count_recovery_codes") as session:
            count = await session.scalar(
                select(func.count())
                .select_from(RecoveryCodeModel)
                .where(
                    RecoveryCodeModel.user_id == user_id,
                    RecoveryCodeModel.used_at.is_(None),
                )
            )
            return int(count or 0)

    async def delete_all(self, user_id: str) -> int:
        async with self._transaction("delete_recovery_codes") as session:
            result = await session.execute(
                delete(RecoveryCodeModel).where(RecoveryCodeModel.user_id == user_id)
            )
            return int(result.rowcount or 0)

    async def delete_used_before(self, cutoff: datetime) -> int:
        async with self._transaction("prune_recovery_codes") as session:
            result = await session.execute(
                delete(RecoveryCodeModel).where(
                    RecoveryCodeModel.used_at.is_not(None),
                    RecoveryCodeModel.used_at < cutoff,
                )
            )
            return int(result.rowcount or 0)


# ═══════════════════════════════════════════════════════════════
# DEVICE SESSIONS
# ═══════════════════════════════════════════════════════════════


class SQLAlchemyDeviceSessionStore(_SQLAlchemyStore, IDeviceSessionStore):
    @staticmethod
    def _to_domain(row: DeviceSessionModel) -> DeviceSession:
        return DeviceSession(
            id=row.id,
            user_id=row.user_id,
            token=row.token,
            device_fingerprint=row.device_fingerprint,
            device_name=row.device_name,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            expires_at=ensure_utc(row.expires_at),
            last_used_at=_utc(row.last_used_at),
            created_at=ensure_utc(row.created_at),
        )

    async def add(self, session: DeviceSession) -> None:
        async with self._transaction("add_device_session") as db:
            db.add(
                DeviceSessionModel(
                    id=session.id,
                    user_id=session.user_id,
                    token=session.token,
                    device_fingerprint=session.device_fingerprint,
                    device_name=session.device_name,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    expires_at=session.expires_at,
                    last_used_at=session.last_used_at,
                    created_at=session.created_at,
                )
            )

    async def find(self, user_id: str, token: str) -> DeviceSession | None:
        async with self._transaction("find_device_session") as db:
            row = await db.scalar(
                select(DeviceSessionModel).where(
                    DeviceSessionModel.user_id == user_id,
                    DeviceSessionModel.token == token,
                )
            )
            return self._to_domain(row) if row else None

    async def touch(self, session_id: str, last_used_at: datetime) -> None:
        async with self._transaction("touch_device_session") as db:
            await db.execute(
                update(DeviceSessionModel)
                .where(DeviceSessionModel.id == session_id)
                .values(last_used_at=last_used_at)
            )

    async def list_for_user(self, user_id: str) -> list[DeviceSession]:
        async with self._transaction("list_device_sessions") as db:
            rows = await db.scalars(
                select(DeviceSessionModel)
                .where(DeviceSessionModel.user_id == user_id)
                .order_by(DeviceSessionModel.created_at)
            )
            return [self._to_domain(row) for row in rows]

    async def delete(self, user_id: str, token: str) -> bool:
        async with self._transaction("delete_device_session") as db:
            result = await db.execute(
                delete(DeviceSessionModel).where(
                    DeviceSessionModel.user_id == user_id,
                    DeviceSessionModel.token == token,
                )
            )
            return bool(result.rowcount)

    async def delete_all(self, user_id: str) -> int:
        async with self._transaction("delete_device_sessions") as db:
            result = await db.execute(
                delete(DeviceSessionModel).where(DeviceSessionModel.user_id == user_id)
            )
            return int(result.rowcount or 0)

    async def delete_expired(self, now: datetime) -> int:
        async with self._transaction("prune_device_sessions") as db:
            result = await db.execute(
                delete(DeviceSessionModel).where(DeviceSessionModel.expires_at <= now)
            )
            return int(result.rowcount or 0)


# ═══════════════════════════════════════════════════════════════
# ATTEMPTS
# ═══════════════════════════════════════════════════════════════


class SQLAlchemyAttemptStore(_SQLAlchemyStore, IAttemptStore):
    """Append-only ``two_factor_auth_attempts`` rows."""

    @staticmethod
    def _to_domain(row: AuthAttemptModel) -> AuthAttempt:
        return AuthAttempt(
            id=row.id,
            user_id=row.user_id,
            session_id=row.session_id,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            method=TwoFactorMethod(row.method),
            type=AttemptType(row.type),
            successful=row.successful,
            failure_reason=(
                FailureReason(row.failure_reason) if row.failure_reason else None
            ),
            code_hash=row.code_hash,
            code_length=row.code_length,
            attempted_at=ensure_utc(row.attempted_at),
        )

    async def add(self, attempt: AuthAttempt) -> None:
        async with self._transaction("add_attempt") as session:
            session.add(
                AuthAttemptModel(
                    id=attempt.id,
                    user_id=attempt.user_id,
                    session_id=attempt.session_id,
                    ip_address=attempt.ip_address,
                    user_agent=attempt.user_agent,
                    method=attempt.method.value,
                    type=attempt.type.value,
                    successful=attempt.successful,
                    failure_reason=(
                        attempt.failure_reason.value if attempt.failure_reason else None
                    ),
                    code_hash=attempt.code_hash,
                    code_length=attempt.code_length,
                    attempted_at=attempt.attempted_at,
                )
            )

    async def query(
        self,
        *,
        user_id: str | None = None,
        ip_address: str | None = None,
        method: TwoFactorMethod | None = None,
        since: datetime | None = None,
    ) -> list[AuthAttempt]:
        stmt = select(AuthAttemptModel)
        if user_id is not None:
            stmt = stmt.where(AuthAttemptModel.user_id == user_id)
        if ip_address is not None:
            stmt = stmt.where(AuthAttemptModel.ip_address == ip_address)
        if method is not None:
            stmt = stmt.where(AuthAttemptModel.method == method.value)
        if since is not None:
            stmt = stmt.where(AuthAttemptModel.attempted_at >= since)
        async with self._transaction("query_attempts") as session:
            rows = await session.scalars(stmt.order_by(AuthAttemptModel.attempted_at))
            return [self._to_domain(row) for row in rows]

    async def delete_before(self, cutoff: datetime) -> int:
        async with self._transaction("prune_attempts") as session:
            result = await session.execute(
                delete(AuthAttemptModel).where(AuthAttemptModel.attempted_at < cutoff)
            )
            return int(result.rowcount or 0)


__all__: list[str] = [
    "SQLAlchemyTwoFactorAuthStore",
    "SQLAlchemyRecoveryCodeStore",
    "SQLAlchemyDeviceSessionStore",
    "SQLAlchemyAttemptStore",
]
