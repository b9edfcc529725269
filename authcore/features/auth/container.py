"""Startup wiring for the session-security components."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.config.settings import Settings
from authcore.features.csrf.service import CsrfTokenManager
from authcore.features.csrf.store import CsrfStore, InMemoryCsrfStore, SqlAlchemyCsrfStore
from authcore.features.lockout.service import AccountLockoutService
from authcore.features.lockout.store import (
    FailedAttemptStore,
    InMemoryFailedAttemptStore,
    SqlAlchemyFailedAttemptStore,
)
from authcore.features.rate_limit.backends import CounterStore, InMemoryCounterStore, RedisCounterStore
from authcore.features.rate_limit.schemas import RateLimitRule
from authcore.features.rate_limit.service import GENERAL_RULE, RateLimiter
from authcore.shared.clock import Clock, utc_now

from .service import SessionManager
from .store import InMemorySessionStore, SessionStore, SqlAlchemySessionStore
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)


@dataclass
class SecurityCore:
    """Components shared by every request, built once per process."""

    settings: Settings
    codec: TokenCodec
    rate_limiter: RateLimiter
    sessions: SessionManager
    csrf: CsrfTokenManager
    lockout: AccountLockoutService
    clock: Clock = utc_now

    async def run_maintenance(self) -> dict[str, int]:
        """Delete expired sessions, CSRF rows and old failed logins, sweep idle rate-limit buckets."""
        return {
            "sessions": await self.sessions.cleanup_expired(),
            "csrf_tokens": await self.csrf.cleanup_expired(),
            "failed_login_attempts": await self.lockout.cleanup_expired(),
            "rate_limit_buckets": await self.rate_limiter.sweep(),
        }

    async def close(self) -> None:
        if isinstance(self.rate_limiter.store, RedisCounterStore):
            await self.rate_limiter.store.close()


def build_counter_store(settings: Settings, clock: Clock = utc_now) -> CounterStore:
    """Redis-backed counters when REDIS_URL is set, process-local otherwise."""
    if settings.redis_url:
        logger.info("Rate limiter using Redis counter store")
        return RedisCounterStore.from_url(settings.redis_url)
    logger.info("Rate limiter using in-memory counter store")
    return InMemoryCounterStore(clock=clock)


def build_stores(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None,
    clock: Clock = utc_now,
) -> tuple[SessionStore, CsrfStore, FailedAttemptStore]:
    """Session, CSRF and failed-login stores for the configured backend.

    Raises:
        ValueError: If the database backend is selected without a session factory

    """
    if settings.store_backend == "memory":
        if settings.is_production:
            logger.warning("In-memory stores in production: sessions are lost on restart and not shared")
        else:
            logger.info("Using in-memory session, CSRF and failed-login stores")
        return (
            InMemorySessionStore(clock=clock),
            InMemoryCsrfStore(clock=clock),
            InMemoryFailedAttemptStore(clock=clock),
        )

    if session_factory is None:
        raise ValueError("The database store backend needs a session factory")
    return (
        SqlAlchemySessionStore(session_factory, clock=clock),
        SqlAlchemyCsrfStore(session_factory, clock=clock),
        SqlAlchemyFailedAttemptStore(session_factory, clock=clock),
    )


def build_security_core(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    counter_store: CounterStore | None = None,
    clock: Clock = utc_now,
) -> SecurityCore:
    """Assemble codec, stores, limiter and managers from settings.

    Raises:
        ConfigurationError: If the signing secret is missing or too short

    """
    codec = TokenCodec.from_settings(settings, clock=clock)
    session_store, csrf_store, attempt_store = build_stores(settings, session_factory, clock)
    rate_limiter = RateLimiter(
        counter_store or build_counter_store(settings, clock),
        general_rule=RateLimitRule(
            capacity=settings.general_rate_limit,
            window_seconds=settings.general_rate_window_seconds,
            description=GENERAL_RULE.description,
        ),
        clock=clock,
    )
    sessions = SessionManager(
        codec,
        session_store,
        rate_limiter,
        max_session_age=timedelta(hours=settings.max_session_age_hours),
        renewal_grace=timedelta(seconds=settings.renewal_grace_seconds),
        clock=clock,
    )
    csrf = CsrfTokenManager(
        csrf_store,
        sessions,
        ttl=timedelta(minutes=settings.csrf_token_ttl_minutes),
        clock=clock,
    )
    lockout = AccountLockoutService(
        attempt_store,
        rate_limiter,
        threshold=settings.lockout_threshold,
        ip_threshold=settings.ip_lockout_threshold,
        lockout_duration=timedelta(minutes=settings.lockout_minutes),
        attempt_window=timedelta(minutes=settings.failed_attempt_window_minutes),
        retention=timedelta(hours=settings.failed_attempt_retention_hours),
        clock=clock,
    )
    return SecurityCore(
        settings=settings,
        codec=codec,
        rate_limiter=rate_limiter,
        sessions=sessions,
        csrf=csrf,
        lockout=lockout,
        clock=clock,
    )
