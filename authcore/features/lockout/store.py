"""Failed login attempt store: SQLAlchemy and in-memory implementations."""

import itertools
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.database.client import run_in_session
from authcore.shared.clock import Clock, utc_now
from authcore.shared.results import StoreResult

from .models import FailedLoginAttempt
from .schemas import AttemptSummary, FailedAttemptRecord


class FailedAttemptStore(Protocol):
    async def record(self, username: str, ip_address: str) -> StoreResult[int]: ...

    async def summary_by_username(self, username: str, since: datetime) -> StoreResult[AttemptSummary]: ...

    async def summary_by_ip(self, ip_address: str, since: datetime) -> StoreResult[AttemptSummary]: ...

    async def recent(self, username: str, limit: int) -> StoreResult[list[FailedAttemptRecord]]: ...

    async def stats(self, since: datetime) -> StoreResult[tuple[int, int, int]]: ...

    async def delete_by_username(self, username: str) -> StoreResult[int]: ...

    async def cleanup_before(self, cutoff: datetime) -> StoreResult[int]: ...


class SqlAlchemyFailedAttemptStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _run[T](self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> StoreResult[T]:
        return await run_in_session(self._session_factory, f"failed_attempt_store.{operation}", work)

    async def record(self, username: str, ip_address: str) -> StoreResult[int]:
        attempt_time = self._clock()

        async def work(session: AsyncSession) -> int:
            row = FailedLoginAttempt(username=username, ip_address=ip_address, attempt_time=attempt_time)
            session.add(row)
            await session.flush()
            return row.id

        return await self._run("record", work)

    async def _summary(self, operation: str, column, value: str, since: datetime) -> StoreResult[AttemptSummary]:
        async def work(session: AsyncSession) -> AttemptSummary:
            stmt = select(func.count(FailedLoginAttempt.id), func.max(FailedLoginAttempt.attempt_time)).where(
                column == value,
                FailedLoginAttempt.attempt_time > since,
            )
            count, last_attempt = (await session.execute(stmt)).one()
            return AttemptSummary(count=count, last_attempt=last_attempt)

        return await self._run(operation, work)

    async def summary_by_username(self, username: str, since: datetime) -> StoreResult[AttemptSummary]:
        return await self._summary("summary_by_username", FailedLoginAttempt.username, username, since)

    async def summary_by_ip(self, ip_address: str, since: datetime) -> StoreResult[AttemptSummary]:
        return await self._summary("summary_by_ip", FailedLoginAttempt.ip_address, ip_address, since)

    async def recent(self, username: str, limit: int) -> StoreResult[list[FailedAttemptRecord]]:
        async def work(session: AsyncSession) -> list[FailedAttemptRecord]:
            stmt = (
                select(FailedLoginAttempt)
                .where(FailedLoginAttempt.username == username)
                .order_by(FailedLoginAttempt.attempt_time.desc(), FailedLoginAttempt.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [FailedAttemptRecord.model_validate(row) for row in result.scalars()]

        return await self._run("recent", work)

    async def stats(self, since: datetime) -> StoreResult[tuple[int, int, int]]:
        async def work(session: AsyncSession) -> tuple[int, int, int]:
            stmt = select(
                func.count(FailedLoginAttempt.id),
                func.count(distinct(FailedLoginAttempt.username)),
                func.count(distinct(FailedLoginAttempt.ip_address)),
            ).where(FailedLoginAttempt.attempt_time > since)
            total, usernames, ips = (await session.execute(stmt)).one()
            return total, usernames, ips

        return await self._run("stats", work)

    async def delete_by_username(self, username: str) -> StoreResult[int]:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(FailedLoginAttempt).where(FailedLoginAttempt.username == username))
            return result.rowcount

        return await self._run("delete_by_username", work)

    async def cleanup_before(self, cutoff: datetime) -> StoreResult[int]:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(FailedLoginAttempt).where(FailedLoginAttempt.attempt_time < cutoff))
            return result.rowcount

        return await self._run("cleanup_before", work)


class InMemoryFailedAttemptStore:
    """Process-local attempts for single-instance development."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._rows: dict[int, FailedAttemptRecord] = {}
        self._ids = itertools.count(1)

    async def record(self, username: str, ip_address: str) -> StoreResult[int]:
        attempt_id = next(self._ids)
        self._rows[attempt_id] = FailedAttemptRecord(
            id=attempt_id, username=username, ip_address=ip_address, attempt_time=self._clock()
        )
        return StoreResult.success(attempt_id)

    def _summary(self, rows: list[FailedAttemptRecord]) -> AttemptSummary:
        if not rows:
            return AttemptSummary()
        return AttemptSummary(count=len(rows), last_attempt=max(row.attempt_time for row in rows))

    async def summary_by_username(self, username: str, since: datetime) -> StoreResult[AttemptSummary]:
        rows = [r for r in self._rows.values() if r.username == username and r.attempt_time > since]
        return StoreResult.success(self._summary(rows))

    async def summary_by_ip(self, ip_address: str, since: datetime) -> StoreResult[AttemptSummary]:
        rows = [r for r in self._rows.values() if r.ip_address == ip_address and r.attempt_time > since]
        return StoreResult.success(self._summary(rows))

    async def recent(self, username: str, limit: int) -> StoreResult[list[FailedAttemptRecord]]:
        rows = [r for r in self._rows.values() if r.username == username]
        rows.sort(key=lambda r: (r.attempt_time, r.id), reverse=True)
        return StoreResult.success(rows[:limit])

    async def stats(self, since: datetime) -> StoreResult[tuple[int, int, int]]:
        rows = [r for r in self._rows.values() if r.attempt_time > since]
        return StoreResult.success(
            (len(rows), len({r.username for r in rows}), len({r.ip_address for r in rows}))
        )

    async def delete_by_username(self, username: str) -> StoreResult[int]:
        doomed = [aid for aid, row in self._rows.items() if row.username == username]
        for attempt_id in doomed:
            del self._rows[attempt_id]
        return StoreResult.success(len(doomed))

    async def cleanup_before(self, cutoff: datetime) -> StoreResult[int]:
        doomed = [aid for aid, row in self._rows.items() if row.attempt_time < cutoff]
        for attempt_id in doomed:
            del self._rows[attempt_id]
        return StoreResult.success(len(doomed))
