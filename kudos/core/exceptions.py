"""
Kudos Custom Exceptions
Every error carries the HTTP status it maps to and renders a JSON body
"""
from typing import Any, Dict, Optional


class KudosError(Exception):
    """Base exception for Kudos"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}
        body.update(self.details)
        return body


class ConfigurationError(KudosError):
    """Invalid or missing configuration"""


class RepositoryError(KudosError):
    """User store read/write failures"""


class SecurityError(KudosError):
    """Security-related errors"""


class AuthenticationError(SecurityError):
    """Missing, expired, invalid or tampered credentials"""

    status_code = 401
    default_message = "Authentication required"


class InvalidTokenError(AuthenticationError):
    """Token failed verification"""

    default_message = "Invalid token"


class SecurityContextViolation(AuthenticationError):
    """Session replayed from a different IP or user agent, or a flagged IP"""

    requires_reauth = True

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["requires_reauth"] = True
        return body


class CSRFError(SecurityError):
    """Missing or mismatched CSRF token"""

    status_code = 403
    default_message = "Invalid CSRF token"


class AuthorizationError(SecurityError):
    """Authenticated but lacking the required role or permission"""

    status_code = 403
    default_message = "Insufficient permissions"


class RateLimitExceeded(KudosError):
    """Client exceeded its request quota"""

    status_code = 429
    default_message = "Too many requests"


class ValidationError(KudosError):
    """Request body shape or content errors"""

    status_code = 400
    default_message = "Invalid input"


class RoleValidationError(ValidationError):
    """Role create/update rejected"""


class ForbiddenOperationError(KudosError):
    """Operation refused by a domain rule"""

    status_code = 403
    default_message = "Operation not allowed"


class SystemRoleError(ForbiddenOperationError):
    """System roles cannot be deleted"""


class NotFoundError(KudosError):
    """Requested resource does not exist"""

    status_code = 404
    default_message = "Not found"


class RoleNotFoundError(NotFoundError):
    """Unknown role id"""

    default_message = "Role not found"


class UserNotFoundError(NotFoundError):
    """Unknown user id"""

    default_message = "User not found"


class ConflictError(KudosError):
    """Resource already exists or is still referenced"""

    status_code = 409
    default_message = "Conflict"
