"""Error taxonomy for the account and session core.

Every error carries the HTTP status the API layer answers with, so routers
never need to translate exceptions by hand.
"""
from datetime import timedelta
from typing import Any, Dict, Optional


class AuthServiceError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code: int = 400
    message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        self.detail = detail or {}

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return None


class Conflict(AuthServiceError):
    """Duplicate account identity"""
    status_code = 409
    message = "A user with this email or username already exists"


class InvalidCredentials(AuthServiceError):
    """Wrong password or unknown account"""
    status_code = 401
    message = "Invalid credentials"


class AccountNotFound(InvalidCredentials):
    """Unknown or inactive account.

    Subclasses InvalidCredentials so clients cannot tell the two apart.
    """


class Unauthorized(AuthServiceError):
    """Missing, unknown, revoked or expired session"""
    status_code = 401
    message = "Authentication required"


class LockedOut(AuthServiceError):
    """Too many failed login attempts inside the lockout window"""
    status_code = 429
    message = "Too many failed attempts. Please try again later."

    def __init__(self, retry_after: timedelta):
        minutes = int(retry_after.total_seconds() // 60)
        super().__init__(detail={"cooldown": f"{minutes} minutes"})
        self.retry_after = retry_after

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(int(self.retry_after.total_seconds()))}


class SessionNotFound(AuthServiceError):
    """No active session matches the token"""
    status_code = 404
    message = "Invalid session"


class StoreUnavailable(AuthServiceError):
    """Durable store failed or timed out"""
    status_code = 503
    message = "Credential store unavailable"


class CacheUnavailable(AuthServiceError):
    """Session cache failed or timed out"""
    status_code = 503
    message = "Session cache unavailable"
