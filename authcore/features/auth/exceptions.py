"""Authentication exceptions."""

from fastapi import HTTPException, status


class ConfigurationError(RuntimeError):
    """Raised at startup when security configuration is missing or weak."""


class SessionStoreError(RuntimeError):
    """Raised when a mutating session operation cannot reach persistence."""

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Session store failure during {operation}: {detail or 'unknown error'}")


class AuthenticationException(HTTPException):
    """Base authentication exception.

    Every authentication failure surfaces with the same generic detail so the
    response never tells a caller which check rejected the token.
    """

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class SessionNotFoundException(HTTPException):
    """Raised when a session id does not belong to the caller."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")


class AuthServiceUnavailableException(HTTPException):
    """Raised when the session store cannot serve a request."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication service error")
