"""Authentication router (session inspection and termination endpoints)."""

import logging

from fastapi import APIRouter, Depends, Response

from authcore.features.csrf.dependencies import require_csrf
from authcore.features.rate_limit.dependencies import rate_limit

from .container import SecurityCore
from .dependencies import clear_session_cookie, get_security_core, require_session
from .exceptions import SessionNotFoundException
from .schemas import (
    AuthOutcome,
    CurrentSessionResponse,
    MessageResponse,
    SessionListResponse,
    SessionResponse,
    TerminateSessionsResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/session", response_model=CurrentSessionResponse)
async def get_current_session(auth: AuthOutcome = Depends(require_session)):
    """Return the authenticated caller and the state of their session.

    A near-expiry token is renewed transparently: the response then carries a
    new session cookie and ``X-Token-Refreshed: true``.
    """
    assert auth.session is not None and auth.claims is not None
    return CurrentSessionResponse(
        user_id=auth.claims.user_id,
        username=auth.claims.username,
        email=auth.claims.email,
        session_id=auth.session.id,
        expires_at=auth.session.expires_at,
        security_level=auth.security_level,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    auth: AuthOutcome = Depends(require_session),
    core: SecurityCore = Depends(get_security_core),
):
    """Delete the current session and clear the session cookie."""
    assert auth.session is not None
    await core.sessions.logout(auth.session.token)
    clear_session_cookie(response, core.settings)

    logger.info(f"User logged out: user_id={auth.session.user_id} session_id={auth.session.id}")
    return MessageResponse(message="Successfully logged out")


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    auth: AuthOutcome = Depends(require_session),
    core: SecurityCore = Depends(get_security_core),
):
    """List the caller's sessions, newest first, flagging the current one."""
    assert auth.session is not None
    records = await core.sessions.list_sessions(auth.session.user_id)
    return SessionListResponse(
        sessions=[
            SessionResponse(
                id=record.id,
                created_at=record.created_at,
                expires_at=record.expires_at,
                last_activity_at=record.last_activity_at,
                ip_address=record.ip_address,
                user_agent=record.user_agent,
                current=record.id == auth.session.id,
            )
            for record in records
        ]
    )


@router.delete(
    "/sessions",
    response_model=TerminateSessionsResponse,
    dependencies=[Depends(rate_limit("admin_api"))],
)
async def terminate_other_sessions(
    auth: AuthOutcome = Depends(require_csrf),
    core: SecurityCore = Depends(get_security_core),
):
    """Log out everywhere else: delete every session except the current one.

    Requires a CSRF token in the CSRF header.
    """
    assert auth.session is not None
    count = await core.sessions.terminate_other_sessions(auth.session.user_id, auth.session.token)
    return TerminateSessionsResponse(terminated_count=count)


@router.delete(
    "/sessions/{session_id}",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("admin_api"))],
)
async def terminate_session(
    session_id: int,
    response: Response,
    auth: AuthOutcome = Depends(require_csrf),
    core: SecurityCore = Depends(get_security_core),
):
    """Delete one of the caller's sessions.

    Sessions owned by someone else are reported as not found.
    """
    assert auth.session is not None
    if not await core.sessions.terminate_session(session_id, auth.session.user_id):
        raise SessionNotFoundException()

    if session_id == auth.session.id:
        clear_session_cookie(response, core.settings)
    return MessageResponse(message="Session terminated")
