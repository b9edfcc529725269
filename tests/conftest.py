"""Test configuration and fixtures.

Test setup:
1. Environment comes from .env.test, loaded before any authcore import
2. Time is driven by a FakeClock shared by every component under test
3. SQL-backed stores run against an in-memory SQLite database per test
4. The HTTP client talks to the app in-process; the security core is
   installed on app.state directly instead of through the lifespan
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

from dotenv import load_dotenv

# Load test environment variables before settings are instantiated
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from authcore.config.settings import settings  # noqa: E402
from authcore.database.base import Base  # noqa: E402
from authcore.features.auth.container import SecurityCore, build_security_core  # noqa: E402
from authcore.features.auth.models import AdminSession  # noqa: E402, F401
from authcore.features.auth.schemas import TokenSubject  # noqa: E402
from authcore.features.auth.service import SessionManager  # noqa: E402
from authcore.features.auth.store import InMemorySessionStore, SqlAlchemySessionStore  # noqa: E402
from authcore.features.auth.token_codec import TokenCodec  # noqa: E402
from authcore.features.csrf.models import CsrfToken  # noqa: E402, F401
from authcore.features.csrf.service import CsrfTokenManager  # noqa: E402
from authcore.features.csrf.store import InMemoryCsrfStore  # noqa: E402
from authcore.features.lockout.models import FailedLoginAttempt  # noqa: E402, F401
from authcore.features.rate_limit.backends import InMemoryCounterStore  # noqa: E402
from authcore.features.rate_limit.service import RateLimiter  # noqa: E402
from authcore.main import app  # noqa: E402
from authcore.shared.client_identity.fingerprint import RequestContext  # noqa: E402
from tests.helpers import CLIENT_HEADERS, TEST_SECRET, FakeClock  # noqa: E402

# Clock & identity


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=UTC))


@pytest.fixture
def context() -> RequestContext:
    """Request context of the client at 1.2.3.4 used throughout the suite."""
    return RequestContext.from_headers(CLIENT_HEADERS)


@pytest.fixture
def subject() -> TokenSubject:
    return TokenSubject(id=42, username="editor", email="editor@example.com")


# Components


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def counter_store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def rate_limiter(counter_store: InMemoryCounterStore, clock: FakeClock) -> RateLimiter:
    return RateLimiter(counter_store, clock=clock)


@pytest.fixture
def session_manager(
    codec: TokenCodec, memory_store: InMemorySessionStore, rate_limiter: RateLimiter, clock: FakeClock
) -> SessionManager:
    return SessionManager(codec, memory_store, rate_limiter, clock=clock)


@pytest.fixture
def csrf_manager(session_manager: SessionManager, clock: FakeClock) -> CsrfTokenManager:
    return CsrfTokenManager(InMemoryCsrfStore(clock=clock), session_manager, clock=clock)


# Database Setup - Function Scope (fresh in-memory SQLite per test)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with the full schema.

    StaticPool keeps one connection alive so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_store(session_factory: async_sessionmaker[AsyncSession], clock: FakeClock) -> SqlAlchemySessionStore:
    return SqlAlchemySessionStore(session_factory, clock=clock)


# FastAPI Client


@pytest.fixture
def core(
    session_factory: async_sessionmaker[AsyncSession], counter_store: InMemoryCounterStore, clock: FakeClock
) -> SecurityCore:
    """Security core wired exactly as at startup, over the SQLite test database."""
    return build_security_core(settings, session_factory, counter_store=counter_store, clock=clock)


@pytest_asyncio.fixture
async def client(core: SecurityCore) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client sending the default browser headers from 1.2.3.4.

    Requests are unauthenticated unless a session cookie is passed with
    ``session_cookie(token)``.
    """
    app.state.security = core
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=CLIENT_HEADERS,
    ) as ac:
        yield ac
    app.state.security = None

