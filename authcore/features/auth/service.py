"""Session manager: create, validate, renew and terminate admin sessions."""

import logging
from datetime import timedelta

from authcore.features.rate_limit.service import RateLimiter
from authcore.shared.client_identity.fingerprint import RequestContext
from authcore.shared.clock import Clock, utc_now
from authcore.shared.results import StoreResult

from .exceptions import SessionStoreError
from .schemas import AuthOutcome, SessionData, SessionRecord, SessionValidation, TokenSubject
from .store import SessionStore
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)

LOG_USER_AGENT_LENGTH = 50


def _unwrap[T](result: StoreResult[T], operation: str) -> T:
    if not result.ok:
        raise SessionStoreError(operation, result.detail)
    return result.value  # type: ignore[return-value]


class SessionManager:
    """Combines token verification with the server-side session record.

    A token is never trusted on its own: it must verify against the current
    request and still map to a live session record. Validation fails closed on
    any persistence error; mutating operations raise SessionStoreError.
    """

    def __init__(
        self,
        codec: TokenCodec,
        store: SessionStore,
        rate_limiter: RateLimiter | None = None,
        *,
        max_session_age: timedelta = timedelta(hours=24),
        renewal_grace: timedelta = timedelta(seconds=30),
        clock: Clock = utc_now,
    ) -> None:
        self.codec = codec
        self.store = store
        self.rate_limiter = rate_limiter
        self.max_session_age = max_session_age
        self.renewal_grace = renewal_grace
        self._clock = clock

    async def create_session(self, subject: TokenSubject, context: RequestContext) -> SessionData:
        """Issue a bound token for a verified identity and persist its record.

        Args:
            subject: Identity already verified by the caller
            context: Identity snapshot of the login request

        Returns:
            SessionData with the token, its expiry and the cookie max age

        Raises:
            SessionStoreError: If the session record could not be written

        """
        token = self.codec.issue(subject, context)
        expires_at = self._clock() + self.codec.lifetime

        result = await self.store.create(subject.id, token, expires_at, context.client_ip, context.user_agent)
        session_id = _unwrap(result, "create_session")

        logger.info(
            f"Session created: user_id={subject.id} session_id={session_id} "
            f"ip={context.client_ip} user_agent={context.user_agent[:LOG_USER_AGENT_LENGTH]}"
        )
        return SessionData(
            token=token,
            expires_at=expires_at,
            max_age=self.codec.lifetime_seconds,
            session_id=session_id,
        )

    async def validate_session(self, token: str, context: RequestContext) -> SessionValidation:
        """Validate a bearer token against the request and its session record.

        Order: token verification, record lookup (falling back to a token
        replaced inside the renewal grace window), record expiry, absolute
        session age, activity update, renewal decision.
        """
        verification = self.codec.verify(token, context)
        if not verification.valid:
            return SessionValidation(valid=False, reason=verification.reason)

        claims = verification.claims
        assert claims is not None

        lookup = await self.store.get_by_token(token)
        if not lookup.ok:
            return self._validation_error("get_by_token", lookup.detail)

        record = lookup.value
        superseded = False
        if record is None:
            grace_lookup = await self.store.get_by_previous_token(token)
            if not grace_lookup.ok:
                return self._validation_error("get_by_previous_token", grace_lookup.detail)
            record = grace_lookup.value
            superseded = record is not None

        if record is None:
            logger.info(f"Valid token without a live session record: user_id={claims.user_id}")
            return SessionValidation(valid=False, reason="session_not_found")

        if record.user_id != claims.user_id:
            logger.warning(
                f"Session owner mismatch: token user_id={claims.user_id} session user_id={record.user_id} "
                f"session_id={record.id}"
            )
            return SessionValidation(valid=False, reason="session_not_found")

        now = self._clock()
        record_time_left = (record.expires_at - now).total_seconds()
        if record_time_left <= 0:
            logger.info(f"Session record expired: session_id={record.id}")
            return SessionValidation(valid=False, reason="session_expired")

        if now - record.created_at > self.max_session_age:
            logger.info(f"Session exceeded maximum age: session_id={record.id} user_id={record.user_id}")
            return SessionValidation(valid=False, reason="session_max_age_exceeded")

        activity = await self.store.update_last_activity(record.token)
        if not activity.ok:
            return self._validation_error("update_last_activity", activity.detail)

        # Superseded tokens are never renewed
        needs_renewal = not superseded and (
            verification.needs_renewal or record_time_left < self.codec.renewal_threshold.total_seconds()
        )

        return SessionValidation(
            valid=True,
            session=record,
            claims=claims,
            needs_renewal=needs_renewal,
            time_left=min(verification.time_left, record_time_left),
            security_level=verification.security_level,
            superseded=superseded,
        )

    async def renew_session(
        self, session: SessionRecord, context: RequestContext, subject: TokenSubject | None = None
    ) -> SessionData | None:
        """Rotate the session's token in place, keeping the record id.

        The replaced token stays acceptable for ``renewal_grace`` so requests
        already in flight with it do not fail.

        Returns:
            The new SessionData, or None when the record no longer exists

        Raises:
            SessionStoreError: If the record could not be updated

        """
        subject = subject or TokenSubject(id=session.user_id)
        token = self.codec.issue(subject, context)
        now = self._clock()
        expires_at = now + self.codec.lifetime
        grace_until = now + self.renewal_grace if self.renewal_grace > timedelta(0) else None

        result = await self.store.update_token(session.id, token, expires_at, grace_until)
        if not _unwrap(result, "renew_session"):
            logger.info(f"Session vanished before renewal: session_id={session.id}")
            return None

        logger.info(f"Session renewed: session_id={session.id} user_id={session.user_id}")
        return SessionData(
            token=token,
            expires_at=expires_at,
            max_age=self.codec.lifetime_seconds,
            session_id=session.id,
        )

    async def terminate_session(self, session_id: int, caller_user_id: int) -> bool:
        """Delete a session, only on behalf of the subject that owns it."""
        session = _unwrap(await self.store.get_by_id(session_id), "terminate_session")
        if session is None:
            return False

        if session.user_id != caller_user_id:
            logger.warning(
                f"Unauthorized session termination attempt: session_id={session_id} "
                f"owner={session.user_id} caller={caller_user_id}"
            )
            return False

        deleted = _unwrap(await self.store.delete_by_id(session_id), "terminate_session")
        if deleted:
            logger.info(f"Session terminated: session_id={session_id} user_id={caller_user_id}")
        return deleted

    async def terminate_other_sessions(self, user_id: int, current_token: str) -> int:
        """Log the subject out everywhere except the session holding current_token."""
        count = _unwrap(await self.store.delete_all_except(user_id, current_token), "terminate_other_sessions")
        logger.info(f"Terminated {count} other sessions for user_id={user_id}")
        return count

    async def list_sessions(self, user_id: int) -> list[SessionRecord]:
        return _unwrap(await self.store.list_by_user(user_id), "list_sessions")

    async def get_session(self, session_id: int) -> SessionRecord | None:
        return _unwrap(await self.store.get_by_id(session_id), "get_session")

    async def logout(self, token: str) -> bool:
        """Delete the session addressed by token, including a just-replaced token."""
        if _unwrap(await self.store.delete_by_token(token), "logout"):
            return True

        record = _unwrap(await self.store.get_by_previous_token(token), "logout")
        if record is None:
            return False
        return _unwrap(await self.store.delete_by_id(record.id), "logout")

    async def cleanup_expired(self) -> int:
        count = _unwrap(await self.store.cleanup_expired(), "cleanup_expired")
        if count:
            logger.info(f"Cleaned up {count} expired sessions")
        return count

    async def authenticate(self, token: str | None, context: RequestContext) -> AuthOutcome:
        """Full per-request check: general rate limit, validation, renewal.

        Failure reasons are deliberately coarse: ``rate_limited``,
        ``authentication_required``, ``invalid_session`` or ``service_error``.
        A failed renewal does not fail the request.
        """
        rate_limit = None
        if self.rate_limiter is not None:
            rate_limit = await self.rate_limiter.check_rate_limit(f"ip:{context.client_ip}")
            if not rate_limit.allowed:
                logger.warning(f"General rate limit exceeded: ip_hash={context.ip_hash}")
                return AuthOutcome(success=False, reason="rate_limited", rate_limit=rate_limit)

        if not token:
            return AuthOutcome(success=False, reason="authentication_required", rate_limit=rate_limit)

        validation = await self.validate_session(token, context)
        if not validation.valid:
            reason = "service_error" if validation.reason == "validation_error" else "invalid_session"
            return AuthOutcome(success=False, reason=reason, rate_limit=rate_limit)

        session = validation.session
        assert session is not None and validation.claims is not None

        renewal = None
        if validation.needs_renewal:
            try:
                renewal = await self.renew_session(session, context, validation.claims.subject())
            except SessionStoreError as exc:
                logger.error(f"Session renewal failed, continuing with current token: {exc}")
            if renewal is not None:
                session = session.model_copy(update={"token": renewal.token, "expires_at": renewal.expires_at})

        return AuthOutcome(
            success=True,
            session=session,
            claims=validation.claims,
            rate_limit=rate_limit,
            renewal=renewal,
            security_level=validation.security_level,
        )

    @staticmethod
    def _validation_error(operation: str, detail: str | None) -> SessionValidation:
        logger.error(f"Session validation failed closed during {operation}: {detail}")
        return SessionValidation(valid=False, reason="validation_error")
