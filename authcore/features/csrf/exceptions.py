"""CSRF exceptions."""

from fastapi import HTTPException, status


class CsrfValidationException(HTTPException):
    """Raised when a state-changing request lacks a valid CSRF token."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid CSRF token")
