"""Failed login tracking with account and IP lockouts."""

import logging
import math
from collections.abc import Awaitable
from datetime import timedelta

from authcore.features.auth.exceptions import SessionStoreError
from authcore.features.rate_limit.service import RateLimiter
from authcore.shared.clock import Clock, utc_now
from authcore.shared.results import StoreResult

from .schemas import AttemptSummary, FailedAttemptRecord, FailedLoginStats, LockoutStatus, LoginCheck
from .store import FailedAttemptStore

logger = logging.getLogger(__name__)

LOGIN_ACTION = "login"


class AccountLockoutService:
    """Counts rejected logins per username and per client IP.

    An account is locked once ``threshold`` failures land inside
    ``attempt_window``; the lock lasts ``lockout_duration`` from the latest
    failure. IP addresses use ``ip_threshold`` with the same timing. Like the
    rate limiter, lockout checks fail open: a store error is logged and the
    caller is treated as not locked. The failure count also drives the
    progressive login limit.
    """

    def __init__(
        self,
        store: FailedAttemptStore,
        rate_limiter: RateLimiter | None = None,
        *,
        threshold: int = 5,
        ip_threshold: int = 20,
        lockout_duration: timedelta = timedelta(minutes=15),
        attempt_window: timedelta = timedelta(hours=1),
        retention: timedelta = timedelta(hours=24),
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.rate_limiter = rate_limiter
        self.threshold = threshold
        self.ip_threshold = ip_threshold
        self.lockout_duration = lockout_duration
        self.attempt_window = attempt_window
        self.retention = retention
        self._clock = clock

    async def record_failed_attempt(self, username: str, ip_address: str) -> bool:
        """Remember a rejected login. Returns False if it could not be stored."""
        result = await self.store.record(username, ip_address)
        if not result.ok:
            logger.error(f"Could not record failed login attempt for username={username}: {result.detail}")
            return False
        logger.info(f"Recorded failed login attempt: username={username} ip={ip_address}")
        return True

    async def check_account_lockout(self, username: str) -> LockoutStatus:
        since = self._clock() - self.attempt_window
        return await self._lockout_status(
            self.store.summary_by_username(username, since), self.threshold, f"Account locked out: username={username}"
        )

    async def check_ip_lockout(self, ip_address: str) -> LockoutStatus:
        since = self._clock() - self.attempt_window
        return await self._lockout_status(
            self.store.summary_by_ip(ip_address, since), self.ip_threshold, f"IP address locked out: ip={ip_address}"
        )

    async def check_login_allowed(self, username: str, ip_address: str) -> LoginCheck:
        """Gate a login attempt before its credentials are verified.

        Checks the IP lockout, then the account lockout, then consumes one
        request from the progressive login limit keyed by client IP, tightened
        by the account's recent failures.
        """
        ip_status = await self.check_ip_lockout(ip_address)
        if ip_status.locked:
            return LoginCheck(allowed=False, reason="ip_locked", lockout=ip_status)

        account = await self.check_account_lockout(username)
        if account.locked:
            return LoginCheck(allowed=False, reason="account_locked", lockout=account)

        if self.rate_limiter is None:
            return LoginCheck(allowed=True, lockout=account)

        rate = await self.rate_limiter.apply_progressive_rate_limit(
            f"ip:{ip_address}", account.failed_attempts, LOGIN_ACTION
        )
        if rate.limited:
            logger.warning(
                f"Login rate limited: ip={ip_address} failed_attempts={account.failed_attempts} limit={rate.limit}"
            )
            return LoginCheck(allowed=False, reason="rate_limited", lockout=account, rate_limit=rate)
        return LoginCheck(allowed=True, lockout=account, rate_limit=rate)

    async def reset_failed_attempts(self, username: str) -> int:
        """Forget a username's failures, typically after a successful login."""
        result = await self.store.delete_by_username(username)
        if not result.ok:
            logger.error(f"Could not reset failed login attempts for username={username}: {result.detail}")
            return 0
        logger.info(f"Reset {result.value} failed login attempts for username={username}")
        return result.value or 0

    async def recent_attempts(self, username: str, limit: int = 10) -> list[FailedAttemptRecord]:
        result = await self.store.recent(username, limit)
        if not result.ok:
            logger.error(f"Could not load recent failed attempts for username={username}: {result.detail}")
            return []
        return result.value or []

    async def stats(self, hours: int = 24) -> FailedLoginStats:
        """Totals over the last ``hours``; zeros when the store is unavailable."""
        result = await self.store.stats(self._clock() - timedelta(hours=hours))
        if not result.ok or result.value is None:
            logger.error(f"Could not compute failed login stats: {result.detail}")
            return FailedLoginStats(window_hours=hours)
        total, usernames, ips = result.value
        return FailedLoginStats(total_attempts=total, unique_usernames=usernames, unique_ips=ips, window_hours=hours)

    async def cleanup_expired(self) -> int:
        """Delete attempts older than the retention period.

        Raises:
            SessionStoreError: If the store could not be cleaned

        """
        result = await self.store.cleanup_before(self._clock() - self.retention)
        if not result.ok:
            raise SessionStoreError("failed_attempt_cleanup", result.detail)
        if result.value:
            logger.info(f"Cleaned up {result.value} old failed login attempts")
        return result.value or 0

    async def _lockout_status(
        self, lookup: Awaitable[StoreResult[AttemptSummary]], threshold: int, locked_message: str
    ) -> LockoutStatus:
        result = await lookup
        if not result.ok or result.value is None:
            logger.error(f"Lockout check failed, allowing attempt: {result.detail}")
            return LockoutStatus()

        summary = result.value
        if summary.count >= threshold and summary.last_attempt is not None:
            lockout_until = summary.last_attempt + self.lockout_duration
            remaining = lockout_until - self._clock()
            if remaining > timedelta(0):
                remaining_seconds = math.ceil(remaining.total_seconds())
                logger.warning(
                    f"{locked_message} failed_attempts={summary.count} "
                    f"lockout_until={lockout_until.isoformat()} remaining_seconds={remaining_seconds}"
                )
                return LockoutStatus(
                    locked=True,
                    failed_attempts=summary.count,
                    lockout_until=lockout_until,
                    remaining_seconds=remaining_seconds,
                )

        return LockoutStatus(failed_attempts=summary.count)
