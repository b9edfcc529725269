"""CSRF token manager: session-bound, single-use anti-CSRF secrets."""

import hmac
import logging
import re
import secrets
from datetime import timedelta

from authcore.features.auth.exceptions import SessionStoreError
from authcore.features.auth.service import SessionManager
from authcore.shared.client_identity.fingerprint import RequestContext
from authcore.shared.clock import Clock, utc_now

from .store import CsrfStore

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r"[0-9a-fA-F]{64}")


class CsrfTokenManager:
    """Issues and validates CSRF tokens bound to a session id.

    Issuing never invalidates older tokens; validation only considers the
    most recently issued one, and a successful validation consumes it.
    """

    def __init__(
        self,
        store: CsrfStore,
        session_manager: SessionManager | None = None,
        *,
        ttl: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.session_manager = session_manager
        self.ttl = ttl
        self._clock = clock

    async def issue(self, session_id: int) -> str:
        """Generate and persist a fresh token for the session.

        Raises:
            SessionStoreError: If the token could not be stored

        """
        token = secrets.token_hex(TOKEN_BYTES)
        result = await self.store.insert(session_id, token)
        if not result.ok:
            raise SessionStoreError("csrf_issue", result.detail)
        return token

    async def validate(self, session_id: int, supplied: str | None) -> bool:
        """Check a supplied token against the session's most recent token.

        Never raises: malformed input and store failures both yield False.
        """
        lookup = await self.store.most_recent(session_id)
        if not lookup.ok:
            logger.error(f"CSRF validation failed closed for session_id={session_id}: {lookup.detail}")
            return False

        stored = lookup.value
        if stored is None or not supplied:
            return False

        if self._clock() - stored.created_at > self.ttl:
            logger.info(f"Expired CSRF token presented: session_id={session_id}")
            purge = await self.store.delete_by_session(session_id)
            if not purge.ok:
                logger.error(f"Could not purge expired CSRF tokens for session_id={session_id}: {purge.detail}")
            return False

        if not TOKEN_PATTERN.fullmatch(supplied):
            logger.info(f"Malformed CSRF token rejected: session_id={session_id}")
            return False

        try:
            expected = bytes.fromhex(stored.token)
            candidate = bytes.fromhex(supplied)
        except ValueError:
            logger.info(f"Malformed CSRF token rejected: session_id={session_id}")
            return False

        if len(expected) != len(candidate) or not hmac.compare_digest(expected, candidate):
            logger.warning(f"CSRF token mismatch: session_id={session_id}")
            return False

        # Only the caller whose delete removed the row gets to use the token.
        consumed = await self.store.delete_by_id(stored.id)
        if not consumed.ok:
            logger.error(f"CSRF token could not be consumed for session_id={session_id}: {consumed.detail}")
            return False
        return bool(consumed.value)

    async def issue_for_session_token(self, bearer: str, context: RequestContext) -> str | None:
        """Issue a token for the session behind a bearer token, if it is valid."""
        if self.session_manager is None:
            raise RuntimeError("CsrfTokenManager was built without a SessionManager")

        validation = await self.session_manager.validate_session(bearer, context)
        if not validation.valid or validation.session is None:
            return None
        return await self.issue(validation.session.id)

    async def cleanup_expired(self) -> int:
        result = await self.store.cleanup_expired(self._clock() - self.ttl)
        if not result.ok:
            raise SessionStoreError("csrf_cleanup", result.detail)
        if result.value:
            logger.info(f"Cleaned up {result.value} expired CSRF tokens")
        return result.value or 0
