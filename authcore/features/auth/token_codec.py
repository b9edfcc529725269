"""Bearer session token codec (issue / verify) with client binding."""

import hmac
import logging
import secrets
from datetime import datetime, timedelta

import jwt
from jwt.exceptions import DecodeError, InvalidSignatureError, InvalidTokenError
from pydantic import ValidationError

from authcore.config.settings import MIN_SECRET_LENGTH, Settings
from authcore.shared.client_identity.fingerprint import RequestContext
from authcore.shared.clock import Clock, utc_now

from .exceptions import ConfigurationError
from .schemas import ENHANCED, TokenClaims, TokenSubject, TokenVerification

logger = logging.getLogger(__name__)


class TokenCodec:
    """Signs and verifies bearer session tokens.

    Built once at process start with the signing secret injected; nothing
    below this class reads the environment.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: str = "content-cms",
        audience: str = "admin-panel",
        lifetime: timedelta = timedelta(hours=2),
        renewal_threshold: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            raise ConfigurationError("Token signing secret is not configured")
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(f"Token signing secret must be at least {MIN_SECRET_LENGTH} characters")

        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.lifetime = lifetime
        self.renewal_threshold = renewal_threshold
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenCodec":
        return cls(
            settings.session_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            lifetime=timedelta(minutes=settings.token_lifetime_minutes),
            renewal_threshold=timedelta(minutes=settings.renewal_threshold_minutes),
            clock=clock,
        )

    @property
    def lifetime_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def now(self) -> datetime:
        return self._clock()

    def issue(self, subject: TokenSubject, context: RequestContext) -> str:
        """Create a signed token bound to the requesting client.

        Args:
            subject: Verified identity (id, username, email)
            context: Identity snapshot of the request the token is issued to

        Returns:
            Encoded token string

        """
        now = self._clock()
        payload = {
            "sub": str(subject.id),
            "user_id": subject.id,
            "username": subject.username,
            "email": subject.email,
            "iat": now,
            "exp": now + self.lifetime,
            "iss": self.issuer,
            "aud": self.audience,
            "jti": secrets.token_urlsafe(16),
            "ip_hash": context.ip_hash,
            "device_fingerprint": context.fingerprint,
            "security_level": ENHANCED,
            "session_start": int(now.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str, context: RequestContext) -> TokenVerification:
        """Verify signature, freshness and client binding of a token.

        Checks run in order: signature and standard claims, expiry, binding
        signals, remaining lifetime. The first failing check decides the
        ``reason``.
        """
        now = self._clock()

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "sub"], "verify_exp": False, "verify_iat": False},
            )
            claims = TokenClaims.model_validate(payload)
        except InvalidSignatureError:
            logger.warning("Token signature verification failed")
            return TokenVerification(
                valid=False,
                reason="invalid_signature",
                security_violation=True,
                expired=self._unverified_expired(token, now),
            )
        except (DecodeError, ValidationError):
            logger.info("Malformed token rejected")
            return TokenVerification(valid=False, reason="malformed_token")
        except InvalidTokenError as err:
            logger.warning(f"Token claim validation failed: {err}")
            return TokenVerification(
                valid=False,
                reason="invalid_token",
                security_violation=True,
                expired=self._unverified_expired(token, now),
            )

        time_left = claims.exp - now.timestamp()
        if time_left <= 0:
            logger.info(f"Expired token presented: user_id={claims.user_id}")
            return TokenVerification(valid=False, reason="token_expired", expired=True, claims=claims)

        if claims.ip_hash and not hmac.compare_digest(claims.ip_hash, context.ip_hash):
            logger.warning(
                f"Token IP mismatch detected: user_id={claims.user_id} "
                f"token_ip_hash={claims.ip_hash} request_ip_hash={context.ip_hash}"
            )
            return TokenVerification(valid=False, reason="ip_mismatch", security_violation=True)

        if claims.device_fingerprint and not hmac.compare_digest(claims.device_fingerprint, context.fingerprint):
            logger.warning(
                f"Token device fingerprint mismatch: user_id={claims.user_id} "
                f"token_fingerprint={claims.device_fingerprint} request_fingerprint={context.fingerprint}"
            )
            return TokenVerification(valid=False, reason="device_mismatch", security_violation=True)

        return TokenVerification(
            valid=True,
            claims=claims,
            needs_renewal=time_left < self.renewal_threshold.total_seconds(),
            time_left=time_left,
            security_level=claims.effective_security_level,
        )

    @staticmethod
    def _unverified_expired(token: str, now: datetime) -> bool:
        """Whether the token's own exp claim is past, without trusting it otherwise."""
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
            return float(payload["exp"]) <= now.timestamp()
        except (InvalidTokenError, KeyError, TypeError, ValueError):
            return False
