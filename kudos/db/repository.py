"""
User repository backed by a JSON file

The file holds {"users": [...], "last_updated": "..."}. Reads are cached for
a short period; writes go through an asyncio lock and replace the file
atomically.
"""
import asyncio
import json
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ConflictError, RepositoryError
from ..core.logging import get_logger
from .models import CreateUserData, UpdateUserData, User, UserFilter

logger = get_logger(__name__)


class UserRepository(ABC):
    """Storage contract used by the authentication and admin layers"""

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def find_many(self, user_filter: Optional[UserFilter] = None) -> List[User]:
        ...

    @abstractmethod
    async def create(self, data: CreateUserData) -> User:
        ...

    @abstractmethod
    async def update(self, user_id: str, data: UpdateUserData) -> Optional[User]:
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        ...

    async def exists_by_email(self, email: str) -> bool:
        return await self.find_by_email(email) is not None


class JsonUserRepository(UserRepository):
    def __init__(self, path: Path, cache_ttl_seconds: float = 300):
        self.path = Path(path)
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: Optional[List[User]] = None
        self._cache_loaded_at = 0.0
        self._lock = asyncio.Lock()

    async def _load(self) -> List[User]:
        if self._cache is not None and time.monotonic() - self._cache_loaded_at < self.cache_ttl_seconds:
            return self._cache

        if not self.path.exists():
            self._cache = []
        else:
            try:
                async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                    raw = await f.read()
                data = json.loads(raw) if raw.strip() else {}
                self._cache = [User.model_validate(item) for item in data.get("users", [])]
            except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
                logger.error(f"Failed to load users from {self.path}: {e}")
                raise RepositoryError("Failed to load user data") from e

        self._cache_loaded_at = time.monotonic()
        return self._cache

    async def _save(self, users: List[User]) -> None:
        payload = {
            "users": [user.model_dump(mode="json") for user in users],
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(payload, indent=2))
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save users to {self.path}: {e}")
            raise RepositoryError("Failed to save user data") from e

        self._cache = users
        self._cache_loaded_at = time.monotonic()

    def invalidate_cache(self) -> None:
        self._cache = None

    async def find_by_id(self, user_id: str) -> Optional[User]:
        for user in await self._load():
            if user.id == user_id:
                return user
        return None

    async def find_by_email(self, email: str) -> Optional[User]:
        normalized = (email or "").strip().lower()
        for user in await self._load():
            if user.email == normalized:
                return user
        return None

    async def find_many(self, user_filter: Optional[UserFilter] = None) -> List[User]:
        users = await self._load()
        if user_filter is None:
            return list(users)
        return [user for user in users if user_filter.matches(user)]

    async def create(self, data: CreateUserData) -> User:
        email = data.email.strip().lower()
        async with self._lock:
            users = list(await self._load())
            if any(user.email == email for user in users):
                raise ConflictError("User with this email already exists")

            user = User(
                email=email,
                name=data.name.strip(),
                role_id=data.role_id,
                password_hash=data.password_hash,
                is_active=data.is_active,
            )
            users.append(user)
            await self._save(users)

        logger.info(f"User created: {user.id}", extra={"user_id": user.id})
        return user

    async def update(self, user_id: str, data: UpdateUserData) -> Optional[User]:
        async with self._lock:
            users = list(await self._load())
            for index, user in enumerate(users):
                if user.id == user_id:
                    changes = data.changes()
                    changes["updated_at"] = datetime.now(timezone.utc)
                    updated = user.model_copy(update=changes)
                    users[index] = updated
                    await self._save(users)
                    return updated
        return None

    async def delete(self, user_id: str) -> bool:
        """Soft delete: the record stays but is deactivated"""
        updated = await self.update(user_id, UpdateUserData(is_active=False))
        if updated is not None:
            logger.info(f"User deactivated: {user_id}", extra={"user_id": user_id})
        return updated is not None
