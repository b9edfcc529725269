"""Authentication dependencies for FastAPI."""

import logging

from fastapi import Depends, Request, Response

from authcore.config.settings import Settings
from authcore.features.rate_limit.exceptions import RateLimitExceededException
from authcore.shared.client_identity.fingerprint import RequestContext

from .container import SecurityCore
from .exceptions import AuthenticationException, AuthServiceUnavailableException
from .schemas import AuthOutcome

logger = logging.getLogger(__name__)


def get_security_core(request: Request) -> SecurityCore:
    """The SecurityCore built at startup and stored on app.state."""
    core = getattr(request.app.state, "security", None)
    if core is None:
        logger.error("Security core requested before application startup completed")
        raise AuthServiceUnavailableException()
    return core


def get_request_context(request: Request) -> RequestContext:
    """Identity snapshot of the current request (client IP and browser headers)."""
    peer = request.client.host if request.client else None
    return RequestContext.from_headers(request.headers, peer=peer)


def set_session_cookie(response: Response, token: str, max_age: int, settings: Settings) -> None:
    """Set the bearer token cookie.

    Renewal re-sets the cookie through this same helper so the replacement
    carries identical attributes.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path="/",
    )


async def require_session(
    request: Request,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    core: SecurityCore = Depends(get_security_core),
) -> AuthOutcome:
    """Authenticate the request from its session cookie.

    Args:
        request: FastAPI request object
        response: Response the quota headers and renewed cookie are applied to
        context: Identity snapshot of the request
        core: Security components

    Returns:
        Successful AuthOutcome with the live session and token claims

    Raises:
        RateLimitExceededException: If the general rate limit is exhausted
        AuthenticationException: If the token or its session is not valid
        AuthServiceUnavailableException: If the session store cannot be reached

    """
    token = request.cookies.get(core.settings.session_cookie_name)
    outcome = await core.sessions.authenticate(token, context)
    now = core.clock()

    if not outcome.success:
        if outcome.reason == "rate_limited" and outcome.rate_limit is not None:
            raise RateLimitExceededException(outcome.rate_limit, now)
        if outcome.reason == "service_error":
            raise AuthServiceUnavailableException()
        raise AuthenticationException()

    if outcome.rate_limit is not None:
        response.headers.update(outcome.rate_limit.headers(now))

    if outcome.renewal is not None:
        set_session_cookie(response, outcome.renewal.token, outcome.renewal.max_age, core.settings)
        response.headers["X-Token-Refreshed"] = "true"

    return outcome
