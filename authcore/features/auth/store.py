"""Session store: persistence boundary for session records.

Every operation is a single statement in its own transaction and returns a
StoreResult; database errors are reported as failures, never raised.
"""

import itertools
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.database.client import run_in_session
from authcore.shared.clock import Clock, ensure_utc, utc_now
from authcore.shared.results import StoreErrorKind, StoreResult

from .models import USER_AGENT_MAX_LENGTH, AdminSession
from .schemas import SessionRecord

IP_ADDRESS_MAX_LENGTH = 45


class SessionStore(Protocol):
    async def create(
        self, user_id: int, token: str, expires_at: datetime, ip_address: str, user_agent: str
    ) -> StoreResult[int]: ...

    async def get_by_token(self, token: str) -> StoreResult[SessionRecord | None]: ...

    async def get_by_previous_token(self, token: str) -> StoreResult[SessionRecord | None]: ...

    async def get_by_id(self, session_id: int) -> StoreResult[SessionRecord | None]: ...

    async def list_by_user(self, user_id: int) -> StoreResult[list[SessionRecord]]: ...

    async def update_token(
        self, session_id: int, new_token: str, new_expires_at: datetime, grace_until: datetime | None = None
    ) -> StoreResult[bool]: ...

    async def update_last_activity(self, token: str) -> StoreResult[bool]: ...

    async def delete_by_token(self, token: str) -> StoreResult[bool]: ...

    async def delete_by_id(self, session_id: int) -> StoreResult[bool]: ...

    async def delete_all_except(self, user_id: int, keep_token: str) -> StoreResult[int]: ...

    async def delete_by_user(self, user_id: int) -> StoreResult[int]: ...

    async def cleanup_expired(self) -> StoreResult[int]: ...


def _client_metadata(ip_address: str, user_agent: str) -> tuple[str, str]:
    return (ip_address or "unknown")[:IP_ADDRESS_MAX_LENGTH], (user_agent or "unknown")[:USER_AGENT_MAX_LENGTH]


class SqlAlchemySessionStore:
    """Session store over the admin_sessions table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _run[T](self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> StoreResult[T]:
        return await run_in_session(self._session_factory, f"session_store.{operation}", work)

    @staticmethod
    def _to_record(row: AdminSession | None) -> SessionRecord | None:
        return SessionRecord.model_validate(row) if row is not None else None

    async def create(
        self, user_id: int, token: str, expires_at: datetime, ip_address: str, user_agent: str
    ) -> StoreResult[int]:
        ip_address, user_agent = _client_metadata(ip_address, user_agent)
        now = self._clock()

        async def work(session: AsyncSession) -> int:
            record = AdminSession(
                user_id=user_id,
                token=token,
                expires_at=expires_at,
                created_at=now,
                last_activity_at=now,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            session.add(record)
            await session.flush()
            return record.id

        return await self._run("create", work)

    async def get_by_token(self, token: str) -> StoreResult[SessionRecord | None]:
        now = self._clock()

        async def work(session: AsyncSession) -> SessionRecord | None:
            stmt = select(AdminSession).where(AdminSession.token == token, AdminSession.expires_at > now)
            result = await session.execute(stmt)
            return self._to_record(result.scalar_one_or_none())

        return await self._run("get_by_token", work)

    async def get_by_previous_token(self, token: str) -> StoreResult[SessionRecord | None]:
        now = self._clock()

        async def work(session: AsyncSession) -> SessionRecord | None:
            stmt = select(AdminSession).where(
                AdminSession.previous_token == token,
                AdminSession.previous_token_expires_at > now,
                AdminSession.expires_at > now,
            )
            result = await session.execute(stmt)
            return self._to_record(result.scalars().first())

        return await self._run("get_by_previous_token", work)

    async def get_by_id(self, session_id: int) -> StoreResult[SessionRecord | None]:
        async def work(session: AsyncSession) -> SessionRecord | None:
            return self._to_record(await session.get(AdminSession, session_id))

        return await self._run("get_by_id", work)

    async def list_by_user(self, user_id: int) -> StoreResult[list[SessionRecord]]:
        async def work(session: AsyncSession) -> list[SessionRecord]:
            stmt = (
                select(AdminSession)
                .where(AdminSession.user_id == user_id)
                .order_by(AdminSession.created_at.desc(), AdminSession.id.desc())
            )
            result = await session.execute(stmt)
            return [SessionRecord.model_validate(row) for row in result.scalars().all()]

        return await self._run("list_by_user", work)

    async def update_token(
        self, session_id: int, new_token: str, new_expires_at: datetime, grace_until: datetime | None = None
    ) -> StoreResult[bool]:
        async def work(session: AsyncSession) -> bool:
            # SET expressions read pre-update column values, so previous_token
            # receives the token being replaced.
            stmt = (
                update(AdminSession)
                .where(AdminSession.id == session_id)
                .values(
                    previous_token=AdminSession.token if grace_until is not None else None,
                    previous_token_expires_at=grace_until,
                    token=new_token,
                    expires_at=new_expires_at,
                )
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

        return await self._run("update_token", work)

    async def update_last_activity(self, token: str) -> StoreResult[bool]:
        now = self._clock()

        async def work(session: AsyncSession) -> bool:
            stmt = (
                update(AdminSession)
                .where(AdminSession.token == token, AdminSession.last_activity_at < now)
                .values(last_activity_at=now)
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

        return await self._run("update_last_activity", work)

    async def delete_by_token(self, token: str) -> StoreResult[bool]:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(delete(AdminSession).where(AdminSession.token == token))
            return result.rowcount > 0

        return await self._run("delete_by_token", work)

    async def delete_by_id(self, session_id: int) -> StoreResult[bool]:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(delete(AdminSession).where(AdminSession.id == session_id))
            return result.rowcount > 0

        return await self._run("delete_by_id", work)

    async def delete_all_except(self, user_id: int, keep_token: str) -> StoreResult[int]:
        async def work(session: AsyncSession) -> int:
            stmt = delete(AdminSession).where(AdminSession.user_id == user_id, AdminSession.token != keep_token)
            result = await session.execute(stmt)
            return result.rowcount

        return await self._run("delete_all_except", work)

    async def delete_by_user(self, user_id: int) -> StoreResult[int]:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(AdminSession).where(AdminSession.user_id == user_id))
            return result.rowcount

        return await self._run("delete_by_user", work)

    async def cleanup_expired(self) -> StoreResult[int]:
        now = self._clock()

        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(AdminSession).where(AdminSession.expires_at <= now))
            return result.rowcount

        return await self._run("cleanup_expired", work)


class InMemorySessionStore:
    """Process-local session store for single-instance development and tests."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._records: dict[int, SessionRecord] = {}
        self._ids = itertools.count(1)

    def _live(self, record: SessionRecord) -> bool:
        return record.expires_at > self._clock()

    async def create(
        self, user_id: int, token: str, expires_at: datetime, ip_address: str, user_agent: str
    ) -> StoreResult[int]:
        if any(record.token == token for record in self._records.values()):
            return StoreResult.failure(StoreErrorKind.INTEGRITY, "create: duplicate token")
        ip_address, user_agent = _client_metadata(ip_address, user_agent)
        now = self._clock()
        session_id = next(self._ids)
        self._records[session_id] = SessionRecord(
            id=session_id,
            user_id=user_id,
            token=token,
            expires_at=ensure_utc(expires_at),
            created_at=now,
            last_activity_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return StoreResult.success(session_id)

    async def get_by_token(self, token: str) -> StoreResult[SessionRecord | None]:
        for record in self._records.values():
            if record.token == token and self._live(record):
                return StoreResult.success(record.model_copy())
        return StoreResult.success(None)

    async def get_by_previous_token(self, token: str) -> StoreResult[SessionRecord | None]:
        now = self._clock()
        for record in self._records.values():
            if (
                record.previous_token == token
                and record.previous_token_expires_at is not None
                and record.previous_token_expires_at > now
                and self._live(record)
            ):
                return StoreResult.success(record.model_copy())
        return StoreResult.success(None)

    async def get_by_id(self, session_id: int) -> StoreResult[SessionRecord | None]:
        record = self._records.get(session_id)
        return StoreResult.success(record.model_copy() if record else None)

    async def list_by_user(self, user_id: int) -> StoreResult[list[SessionRecord]]:
        records = [r.model_copy() for r in self._records.values() if r.user_id == user_id]
        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return StoreResult.success(records)

    async def update_token(
        self, session_id: int, new_token: str, new_expires_at: datetime, grace_until: datetime | None = None
    ) -> StoreResult[bool]:
        record = self._records.get(session_id)
        if record is None:
            return StoreResult.success(False)
        self._records[session_id] = record.model_copy(
            update={
                "previous_token": record.token if grace_until is not None else None,
                "previous_token_expires_at": grace_until,
                "token": new_token,
                "expires_at": ensure_utc(new_expires_at),
            }
        )
        return StoreResult.success(True)

    async def update_last_activity(self, token: str) -> StoreResult[bool]:
        now = self._clock()
        for session_id, record in self._records.items():
            if record.token == token and record.last_activity_at < now:
                self._records[session_id] = record.model_copy(update={"last_activity_at": now})
                return StoreResult.success(True)
        return StoreResult.success(False)

    async def delete_by_token(self, token: str) -> StoreResult[bool]:
        for session_id, record in list(self._records.items()):
            if record.token == token:
                del self._records[session_id]
                return StoreResult.success(True)
        return StoreResult.success(False)

    async def delete_by_id(self, session_id: int) -> StoreResult[bool]:
        return StoreResult.success(self._records.pop(session_id, None) is not None)

    async def delete_all_except(self, user_id: int, keep_token: str) -> StoreResult[int]:
        doomed = [sid for sid, r in self._records.items() if r.user_id == user_id and r.token != keep_token]
        for session_id in doomed:
            del self._records[session_id]
        return StoreResult.success(len(doomed))

    async def delete_by_user(self, user_id: int) -> StoreResult[int]:
        doomed = [sid for sid, r in self._records.items() if r.user_id == user_id]
        for session_id in doomed:
            del self._records[session_id]
        return StoreResult.success(len(doomed))

    async def cleanup_expired(self) -> StoreResult[int]:
        doomed = [sid for sid, r in self._records.items() if not self._live(r)]
        for session_id in doomed:
            del self._records[session_id]
        return StoreResult.success(len(doomed))
