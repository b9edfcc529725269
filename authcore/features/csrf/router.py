"""CSRF router."""

from fastapi import APIRouter, Depends

from authcore.features.auth.container import SecurityCore
from authcore.features.auth.dependencies import get_security_core, require_session
from authcore.features.auth.schemas import AuthOutcome

from .schemas import CsrfTokenResponse

router = APIRouter(prefix="/auth", tags=["CSRF"])


@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def get_csrf_token(
    auth: AuthOutcome = Depends(require_session),
    core: SecurityCore = Depends(get_security_core),
):
    """Issue a single-use CSRF token for the current session.

    Send it back in the CSRF header on the next state-changing request.
    """
    assert auth.session is not None
    return CsrfTokenResponse(csrf_token=await core.csrf.issue(auth.session.id))
