"""
Error taxonomy shared by the API server and the session client.

Server handlers raise these and a single exception handler renders them as
``{"success": false, "message": ..., "code": ...}``. The client rebuilds the
same classes from error responses, plus the transport-level errors that only
exist on its side of the wire.
"""

from typing import Any, Dict, Optional


class TelehealthError(Exception):
    """Base exception for all telehealth errors."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a response body."""
        body: Dict[str, Any] = {
            "success": False,
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(TelehealthError):
    """Bad input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class AuthenticationError(TelehealthError):
    """Bad credentials or an invalid token."""

    status_code = 401
    default_code = "UNKNOWN"
    default_message = "Could not validate credentials"


class MissingTokenError(AuthenticationError):
    default_code = "MISSING_TOKEN"
    default_message = "Authentication required"


class ExpiredTokenError(AuthenticationError):
    default_code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class MalformedTokenError(AuthenticationError):
    default_code = "TOKEN_MALFORMED"
    default_message = "Invalid token"


class AccountLockedError(AuthenticationError):
    status_code = 423
    default_code = "ACCOUNT_LOCKED"
    default_message = "Account is temporarily locked due to multiple failed login attempts"


class AuthorizationError(TelehealthError):
    """Authenticated identity lacks the required role."""

    status_code = 403
    default_code = "FORBIDDEN"
    default_message = "Forbidden"


class NotFoundError(TelehealthError):
    status_code = 404
    default_code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(TelehealthError):
    status_code = 409
    default_code = "CONFLICT"
    default_message = "Resource already exists"


class RateLimitError(TelehealthError):
    status_code = 429
    default_code = "RATE_LIMITED"
    default_message = "Too many requests. Please try again later."


# Client-local errors; never produced by the server.

class TransportError(TelehealthError):
    """The request never produced an HTTP response."""

    status_code = 0
    default_code = "TRANSPORT_ERROR"
    default_message = "Network error"


class RequestTimeoutError(TransportError):
    default_code = "TIMEOUT"
    default_message = "Request timed out"


class SessionBusyError(TelehealthError):
    """An authentication flow is already in flight."""

    status_code = 0
    default_code = "SESSION_BUSY"
    default_message = "Another authentication request is already in progress"


_BY_STATUS = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    423: AccountLockedError,
    429: RateLimitError,
}

_BY_CODE = {
    MissingTokenError.default_code: MissingTokenError,
    ExpiredTokenError.default_code: ExpiredTokenError,
    MalformedTokenError.default_code: MalformedTokenError,
}


def error_from_response(
    status_code: int,
    body: Optional[Dict[str, Any]],
    fallback_message: str,
) -> TelehealthError:
    """Rebuild a taxonomy error from an error response."""
    body = body if isinstance(body, dict) else {}
    message = body.get("message") or fallback_message
    code = body.get("code")
    error_cls = _BY_CODE.get(code) or _BY_STATUS.get(status_code, TelehealthError)
    error = error_cls(message, code=code)
    if error_cls is TelehealthError:
        error.status_code = status_code
    return error
