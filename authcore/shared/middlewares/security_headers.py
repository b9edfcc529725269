"""Middleware adding browser security headers to every response."""

from fastapi import Request

from authcore.config.settings import settings

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


async def security_headers_middleware(request: Request, call_next):
    """Attach the standard security headers to the response.

    Strict-Transport-Security is only sent in production, where the app is
    served over TLS.

    Args:
        request: FastAPI request object
        call_next: Next middleware/route handler

    Returns:
        The next handler's response with security headers applied

    """
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = HSTS_VALUE
    return response
