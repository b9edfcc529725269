"""CSRF dependencies for FastAPI."""

from fastapi import Depends, Request

from authcore.features.auth.container import SecurityCore
from authcore.features.auth.dependencies import get_security_core, require_session
from authcore.features.auth.schemas import AuthOutcome

from .exceptions import CsrfValidationException


async def require_csrf(
    request: Request,
    auth: AuthOutcome = Depends(require_session),
    core: SecurityCore = Depends(get_security_core),
) -> AuthOutcome:
    """Consume the CSRF token sent in the configured header.

    Raises:
        CsrfValidationException: If the header is missing, stale, already used or wrong

    """
    assert auth.session is not None
    supplied = request.headers.get(core.settings.csrf_header_name)
    if not await core.csrf.validate(auth.session.id, supplied):
        raise CsrfValidationException()
    return auth
