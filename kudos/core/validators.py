"""
Input validation helpers shared by the API and the auth service
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TAG_PATTERN = re.compile(r"<[^>]*>")
ANGLE_BRACKETS = re.compile(r"[<>]")

MAX_EMAIL_LENGTH = 254
MAX_STRING_LENGTH = 1000
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@dataclass
class ValidationResult:
    """Validation result container"""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str):
        self.errors.append(message)
        self.is_valid = False


class InputValidator:
    """Stateless request input checks"""

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email or not isinstance(email, str):
            return False
        email = email.strip()
        if len(email) > MAX_EMAIL_LENGTH:
            return False
        if not EMAIL_PATTERN.match(email):
            return False
        if ".." in email or email.startswith(".") or email.endswith("."):
            return False
        return True

    @staticmethod
    def validate_password_strength(password: Optional[str]) -> ValidationResult:
        """
        Check length and character classes of a password
        Args:
            password: Candidate password
        Returns:
            ValidationResult listing every failed rule
        """
        result = ValidationResult()

        if not password or not isinstance(password, str):
            result.add_error("Password is required")
            return result

        if len(password) < MIN_PASSWORD_LENGTH:
            result.add_error(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        if len(password) > MAX_PASSWORD_LENGTH:
            result.add_error(
                f"Password must be less than {MAX_PASSWORD_LENGTH} characters"
            )
        if not re.search(r"[a-z]", password):
            result.add_error("Password must contain at least one lowercase letter")
        if not re.search(r"[A-Z]", password):
            result.add_error("Password must contain at least one uppercase letter")
        if not re.search(r"\d", password):
            result.add_error("Password must contain at least one number")
        if not SPECIAL_CHARACTERS.search(password):
            result.add_error("Password must contain at least one special character")

        return result

    @staticmethod
    def sanitize_string(value: Any) -> str:
        """Trim, bound and strip markup from free text"""
        if not isinstance(value, str):
            return ""
        value = value.strip()[:MAX_STRING_LENGTH]
        value = TAG_PATTERN.sub("", value)
        return ANGLE_BRACKETS.sub("", value)

    @staticmethod
    def validate_required_fields(
        body: Optional[Dict[str, Any]], required_fields: Iterable[str]
    ) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(body, dict):
            result.add_error("Invalid request body")
            return result

        for field_name in required_fields:
            value = body.get(field_name)
            if value is None or (isinstance(value, str) and not value.strip()):
                result.add_error(f"{field_name} is required")
        return result
