"""Rate limiting dependencies for FastAPI."""

from fastapi import Depends, Response

from authcore.features.auth.container import SecurityCore
from authcore.features.auth.dependencies import get_request_context, get_security_core
from authcore.shared.client_identity.fingerprint import RequestContext

from .exceptions import RateLimitExceededException
from .schemas import RateLimitResult


def rate_limit(action: str):
    """Dependency factory applying the named action rule per client IP.

    Usage:
        @router.delete("/sessions", dependencies=[Depends(rate_limit("admin_api"))])
    """

    async def limiter(
        response: Response,
        context: RequestContext = Depends(get_request_context),
        core: SecurityCore = Depends(get_security_core),
    ) -> RateLimitResult:
        result = await core.rate_limiter.apply_rate_limit(f"ip:{context.client_ip}", action)
        now = core.clock()
        if result.limited:
            raise RateLimitExceededException(result, now)
        response.headers.update(result.headers(now))
        return result

    return limiter
