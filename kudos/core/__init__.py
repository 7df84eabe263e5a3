from .exceptions import (
    KudosError,
    SecurityError,
    AuthenticationError,
    AuthorizationError,
    ValidationError,
)
from .validators import InputValidator, ValidationResult

__all__ = [
    "KudosError",
    "SecurityError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "InputValidator",
    "ValidationResult",
]
