"""
User administration rules

Wraps the user repository with the checks the admin API relies on: role
assignment rights, no self-deletion or self-promotion, and never leaving
the system without an active administrator.
"""
import asyncio
from typing import List, Optional

from ..core.exceptions import (
    AuthorizationError,
    ForbiddenOperationError,
    UserNotFoundError,
    ValidationError,
)
from ..core.logging import get_logger
from ..db.models import UpdateUserData, User, UserFilter
from ..db.repository import UserRepository
from .permissions import ADMIN_ROLE_ID, Permission, can_assign_role
from .roles import DEFAULT_ROLE_ID, RoleService
from .service import AuthenticationService
from .session import SecureSession, SessionSecurityManager

logger = get_logger(__name__)


class UserManager:
    def __init__(
        self,
        users: UserRepository,
        auth: AuthenticationService,
        roles: RoleService,
        sessions: SessionSecurityManager,
    ):
        self.users = users
        self.auth = auth
        self.roles = roles
        self.sessions = sessions
        # Serialises admin-count checks with the writes that depend on them
        self._admin_lock = asyncio.Lock()

    async def list_users(self, user_filter: Optional[UserFilter] = None) -> List[User]:
        return await self.users.find_many(user_filter)

    async def get_user(self, user_id: str) -> User:
        user = await self.users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    async def count_active_admins(self) -> int:
        admins = await self.users.find_many(UserFilter(role_id=ADMIN_ROLE_ID, is_active=True))
        return len(admins)

    async def _ensure_not_last_admin(self, user: User, message: str) -> None:
        if user.role_id == ADMIN_ROLE_ID and user.is_active and await self.count_active_admins() <= 1:
            raise ForbiddenOperationError(message)

    @staticmethod
    def _assignment_error(actor: SecureSession, role_id: str, message: str) -> AuthorizationError:
        required = [Permission.ASSIGN_ROLES.value]
        if role_id == ADMIN_ROLE_ID:
            required.append(Permission.MANAGE_ROLES.value)
        return AuthorizationError(
            message,
            details={"required": required, "user": [p.value for p in actor.permissions]},
        )

    def _ensure_can_assign(self, actor: SecureSession, role_id: str) -> None:
        if not self.roles.role_exists(role_id):
            raise ValidationError("Invalid role", details={"details": [f"Unknown role: {role_id}"]})

        if not can_assign_role(actor.permissions, role_id):
            raise self._assignment_error(actor, role_id, "Insufficient permissions to assign role")

    def _ensure_can_manage(self, actor: SecureSession, user: User) -> None:
        """Credentials and status of another user need rights over that user's role"""
        if actor.user_id != user.id and not can_assign_role(actor.permissions, user.role_id):
            raise self._assignment_error(
                actor, user.role_id, "Insufficient permissions to modify this user"
            )

    async def create_user(
        self,
        actor: SecureSession,
        email: str,
        name: str,
        password: str,
        role_id: Optional[str] = None,
    ) -> User:
        role_id = role_id or DEFAULT_ROLE_ID
        if role_id != DEFAULT_ROLE_ID:
            self._ensure_can_assign(actor, role_id)
        elif not self.roles.role_exists(role_id):
            raise ValidationError("Invalid role")

        user = await self.auth.register_user(email=email, name=name, password=password, role_id=role_id)
        logger.info(
            f"User {user.id} created by {actor.user_id} with role {role_id}",
            extra={"user_id": actor.user_id},
        )
        return user

    async def update_user(
        self,
        actor: SecureSession,
        user_id: str,
        name: Optional[str] = None,
        role_id: Optional[str] = None,
        password: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> User:
        async with self._admin_lock:
            return await self._update_user(actor, user_id, name, role_id, password, is_active)

    async def _update_user(
        self,
        actor: SecureSession,
        user_id: str,
        name: Optional[str],
        role_id: Optional[str],
        password: Optional[str],
        is_active: Optional[bool],
    ) -> User:
        user = await self.get_user(user_id)
        changes = UpdateUserData()
        revoke_reason = None

        if name is not None:
            changes.name = name.strip()
            if not changes.name:
                raise ValidationError("Invalid input", details={"details": ["Name cannot be empty"]})

        if role_id is not None and role_id != user.role_id:
            if actor.user_id == user_id:
                raise ForbiddenOperationError("Cannot modify your own role")
            self._ensure_can_assign(actor, role_id)
            self._ensure_can_manage(actor, user)
            await self._ensure_not_last_admin(user, "Cannot remove the last admin user")
            changes.role_id = role_id
            revoke_reason = "Role changed"

        if is_active is not None and is_active != user.is_active:
            if not is_active and actor.user_id == user_id:
                raise ForbiddenOperationError("Cannot deactivate your own account")
            self._ensure_can_manage(actor, user)
            if not is_active:
                await self._ensure_not_last_admin(user, "Cannot deactivate the last admin user")
                revoke_reason = "Account deactivated"
            changes.is_active = is_active

        if password is not None:
            self._ensure_can_manage(actor, user)
            result = self.auth.validate_password(password)
            if not result.is_valid:
                raise ValidationError("Invalid input", details={"details": result.errors})
            changes.password_hash = await self.auth.hash_password(password)
            revoke_reason = revoke_reason or "Password changed"

        updated = await self.users.update(user_id, changes)
        if updated is None:
            raise UserNotFoundError()

        if revoke_reason and actor.user_id != user_id:
            self.sessions.invalidate_user_sessions(user_id, revoke_reason)
        logger.info(f"User {user_id} updated by {actor.user_id}", extra={"user_id": actor.user_id})
        return updated

    async def delete_user(self, actor: SecureSession, user_id: str) -> None:
        if actor.user_id == user_id:
            raise ForbiddenOperationError("Cannot delete your own account")

        async with self._admin_lock:
            user = await self.get_user(user_id)
            await self._ensure_not_last_admin(user, "Cannot delete the last admin user")
            await self.users.delete(user_id)

        self.sessions.invalidate_user_sessions(user_id, "User account deleted")
        logger.info(f"User {user_id} deleted by {actor.user_id}", extra={"user_id": actor.user_id})

    async def force_logout(self, actor: SecureSession, user_id: str) -> int:
        await self.get_user(user_id)
        count = self.sessions.invalidate_user_sessions(user_id, f"Forced logout by {actor.user_id}")
        logger.warning(
            f"Forced logout of user {user_id} by {actor.user_id}: {count} sessions",
            extra={"user_id": actor.user_id},
        )
        return count
