"""
Authentication service: password hashing and credential checks
"""
import asyncio
import re
import secrets
import string
from typing import List, Optional

from passlib.context import CryptContext

from ..core.exceptions import ValidationError
from ..core.logging import get_logger
from ..core.validators import InputValidator, ValidationResult
from ..db.models import CreateUserData, PublicUser, User
from ..db.repository import UserRepository

logger = get_logger(__name__)

SEQUENTIAL_START = re.compile(
    r"^(012|123|234|345|456|567|678|789|890|abc|bcd|cde|def|efg|fgh|ghi|hij|ijk|"
    r"jkl|klm|lmn|mno|nop|opq|pqr|qrs|rst|stu|tuv|uvw|vwx|wxy|xyz)",
    re.IGNORECASE,
)
REPEATED_CHARACTER = re.compile(r"^(.)\1+$")
COMMON_WEAK_PASSWORDS = (
    "password",
    "12345678",
    "qwerty",
    "abc123",
    "password123",
    "admin",
    "letmein",
    "welcome",
    "monkey",
    "1234567890",
)
PASSWORD_SPECIALS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def create_password_context(rounds: int = 3, memory_kib: int = 65536) -> CryptContext:
    """Argon2 hasher with a fixed work factor"""
    return CryptContext(
        schemes=["argon2"],
        deprecated="auto",
        argon2__rounds=rounds,
        argon2__memory_cost=memory_kib,
    )


def check_password_policy(password: Optional[str]) -> ValidationResult:
    """Strength rules plus common weak patterns"""
    result = InputValidator.validate_password_strength(password)
    if not password:
        return result

    if REPEATED_CHARACTER.match(password):
        result.add_error("Password cannot be all the same character")
    if SEQUENTIAL_START.match(password):
        result.add_error("Password cannot contain sequential characters")
    lowered = password.lower()
    if any(weak in lowered for weak in COMMON_WEAK_PASSWORDS):
        result.add_error("Password contains common weak patterns")
    return result


def generate_secure_password(length: int = 16) -> str:
    """Random password satisfying every strength rule"""
    if length < 8:
        raise ValueError("Generated passwords must be at least 8 characters")

    alphabet = string.ascii_letters + string.digits + PASSWORD_SPECIALS
    while True:
        chars = [
            secrets.choice(string.ascii_uppercase),
            secrets.choice(string.ascii_lowercase),
            secrets.choice(string.digits),
            secrets.choice(PASSWORD_SPECIALS),
        ]
        chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
        secrets.SystemRandom().shuffle(chars)
        password = "".join(chars)
        if check_password_policy(password).is_valid:
            return password


class AuthenticationService:
    def __init__(self, users: UserRepository, pwd_context: Optional[CryptContext] = None):
        self.users = users
        self.pwd_context = pwd_context or create_password_context()

    async def hash_password(self, password: str) -> str:
        return await asyncio.to_thread(self.pwd_context.hash, password)

    async def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return await asyncio.to_thread(self.pwd_context.verify, password, password_hash)
        except (ValueError, TypeError) as e:
            logger.error(f"Password hash could not be verified: {e}")
            return False

    def validate_password(self, password: Optional[str]) -> ValidationResult:
        return check_password_policy(password)

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        """
        Check credentials
        Returns:
            The user, or None for unknown email, inactive account or wrong
            password alike
        """
        if not email or not password:
            return None

        user = await self.users.find_by_email(email.strip().lower())
        if user is None:
            # Spend the same time as a real verification
            await asyncio.to_thread(self.pwd_context.dummy_verify)
            return None

        if not user.is_active:
            logger.info(f"Login attempt for inactive user {user.id}", extra={"user_id": user.id})
            return None

        if not await self.verify_password(password, user.password_hash):
            return None

        return user

    async def register_user(
        self, email: str, name: str, password: str, role_id: str = "role_user"
    ) -> User:
        """
        Validate and store a new user
        Raises:
            ValidationError: bad email, name or password
            ConflictError: email already registered
        """
        errors: List[str] = []
        email = (email or "").strip().lower()
        name = InputValidator.sanitize_string(name)

        if not InputValidator.is_valid_email(email):
            errors.append("Invalid email format")
        if not name:
            errors.append("Name is required")
        errors.extend(self.validate_password(password).errors)
        if errors:
            raise ValidationError("Invalid input", details={"details": errors})

        password_hash = await self.hash_password(password)
        return await self.users.create(
            CreateUserData(email=email, name=name, password_hash=password_hash, role_id=role_id)
        )

    @staticmethod
    def to_public_user(user: User) -> PublicUser:
        return user.to_public()
