"""
User records kept by the user repository
"""
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

USER_ID_PREFIX = "user_"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_user_id() -> str:
    return USER_ID_PREFIX + secrets.token_hex(8)


class User(BaseModel):
    id: str = Field(default_factory=generate_user_id)
    email: str
    name: str
    role_id: str = "role_user"
    password_hash: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True

    def to_public(self) -> "PublicUser":
        return PublicUser(**self.model_dump(exclude={"password_hash"}))


class PublicUser(BaseModel):
    """User without credentials, safe to return from the API"""

    id: str
    email: str
    name: str
    role_id: str
    created_at: datetime
    updated_at: datetime
    is_active: bool


class CreateUserData(BaseModel):
    email: str
    name: str
    password_hash: str
    role_id: str = "role_user"
    is_active: bool = True


class UpdateUserData(BaseModel):
    name: Optional[str] = None
    role_id: Optional[str] = None
    password_hash: Optional[str] = None
    is_active: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class UserFilter(BaseModel):
    email: Optional[str] = None
    role_id: Optional[str] = None
    is_active: Optional[bool] = None

    def matches(self, user: User) -> bool:
        if self.email is not None and user.email != self.email.strip().lower():
            return False
        if self.role_id is not None and user.role_id != self.role_id:
            return False
        if self.is_active is not None and user.is_active != self.is_active:
            return False
        return True
