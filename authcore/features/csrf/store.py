"""CSRF token store: SQLAlchemy and in-memory implementations."""

import itertools
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.database.client import run_in_session
from authcore.shared.clock import Clock, utc_now
from authcore.shared.results import StoreResult

from .models import CsrfToken
from .schemas import CsrfRecord


class CsrfStore(Protocol):
    async def insert(self, session_id: int, token: str) -> StoreResult[int]: ...

    async def most_recent(self, session_id: int) -> StoreResult[CsrfRecord | None]: ...

    async def delete_by_id(self, token_id: int) -> StoreResult[bool]: ...

    async def delete_by_session(self, session_id: int) -> StoreResult[int]: ...

    async def cleanup_expired(self, older_than: datetime) -> StoreResult[int]: ...


class SqlAlchemyCsrfStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utc_now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _run[T](self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> StoreResult[T]:
        return await run_in_session(self._session_factory, f"csrf_store.{operation}", work)

    async def insert(self, session_id: int, token: str) -> StoreResult[int]:
        created_at = self._clock()

        async def work(session: AsyncSession) -> int:
            row = CsrfToken(session_id=session_id, token=token, created_at=created_at)
            session.add(row)
            await session.flush()
            return row.id

        return await self._run("insert", work)

    async def most_recent(self, session_id: int) -> StoreResult[CsrfRecord | None]:
        async def work(session: AsyncSession) -> CsrfRecord | None:
            stmt = (
                select(CsrfToken)
                .where(CsrfToken.session_id == session_id)
                .order_by(CsrfToken.created_at.desc(), CsrfToken.id.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return CsrfRecord.model_validate(row) if row is not None else None

        return await self._run("most_recent", work)

    async def delete_by_id(self, token_id: int) -> StoreResult[bool]:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(delete(CsrfToken).where(CsrfToken.id == token_id))
            return result.rowcount > 0

        return await self._run("delete_by_id", work)

    async def delete_by_session(self, session_id: int) -> StoreResult[int]:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(CsrfToken).where(CsrfToken.session_id == session_id))
            return result.rowcount

        return await self._run("delete_by_session", work)

    async def cleanup_expired(self, older_than: datetime) -> StoreResult[int]:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(CsrfToken).where(CsrfToken.created_at < older_than))
            return result.rowcount

        return await self._run("cleanup_expired", work)


class InMemoryCsrfStore:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._rows: dict[int, CsrfRecord] = {}
        self._ids = itertools.count(1)

    async def insert(self, session_id: int, token: str) -> StoreResult[int]:
        token_id = next(self._ids)
        self._rows[token_id] = CsrfRecord(id=token_id, session_id=session_id, token=token, created_at=self._clock())
        return StoreResult.success(token_id)

    async def most_recent(self, session_id: int) -> StoreResult[CsrfRecord | None]:
        rows = [row for row in self._rows.values() if row.session_id == session_id]
        if not rows:
            return StoreResult.success(None)
        return StoreResult.success(max(rows, key=lambda row: (row.created_at, row.id)))

    async def delete_by_id(self, token_id: int) -> StoreResult[bool]:
        return StoreResult.success(self._rows.pop(token_id, None) is not None)

    async def delete_by_session(self, session_id: int) -> StoreResult[int]:
        doomed = [tid for tid, row in self._rows.items() if row.session_id == session_id]
        for token_id in doomed:
            del self._rows[token_id]
        return StoreResult.success(len(doomed))

    async def cleanup_expired(self, older_than: datetime) -> StoreResult[int]:
        doomed = [tid for tid, row in self._rows.items() if row.created_at < older_than]
        for token_id in doomed:
            del self._rows[token_id]
        return StoreResult.success(len(doomed))
