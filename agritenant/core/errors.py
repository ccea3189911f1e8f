"""
Error taxonomy for the tenancy layer

Authorization failures, authentication failures, rate limiting, malformed
input and backend failures are distinct types so callers can tell an
"access denied" apart from a transient outage.
"""

from typing import Optional


class TenancyError(Exception):
    """Base class for all tenancy layer errors"""

    code = "TENANCY_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AccessDeniedError(TenancyError):
    """Access denied, insufficient role or tenant mismatch"""

    code = "ACCESS_DENIED"

    def __init__(
        self,
        message: str = "Access denied to tenant",
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.reason = reason or message


class AuthenticationRequiredError(TenancyError):
    """Session is missing, expired or could not be refreshed"""

    code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "Authentication required", redirect_to: Optional[str] = None):
        super().__init__(message)
        self.redirect_to = redirect_to


class RateLimitExceededError(TenancyError):
    """Per-tenant request cap reached for the current window"""

    code = "RATE_LIMITED"

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class InvalidRequestError(TenancyError):
    """Malformed input, rejected before any backend call"""

    code = "INVALID_REQUEST"


class TenantNotFoundError(TenancyError):
    """No tenant matches the lookup"""

    code = "TENANT_NOT_FOUND"


class BackendError(TenancyError):
    """Non-retryable failure reported by the backend"""

    code = "BACKEND_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientBackendError(BackendError):
    """Network error, timeout or 502/503/504 - safe to retry"""

    code = "TRANSIENT_ERROR"


class BackendAuthError(BackendError):
    """Backend rejected the session credentials (expired/invalid token)"""

    code = "BACKEND_AUTH_ERROR"


TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})
