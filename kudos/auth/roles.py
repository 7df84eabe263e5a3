"""
Role registry: seeded system roles plus runtime custom roles
"""
import secrets
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..core.exceptions import RoleNotFoundError, RoleValidationError, SystemRoleError
from ..core.logging import get_logger
from .permissions import (
    ADMIN_ROLE_ID,
    Permission,
    can_assign_role,
    parse_permissions,
    validate_role_permissions,
)

logger = get_logger(__name__)

DEFAULT_ROLE_ID = "role_user"
CUSTOM_ROLE_PREFIX = "role_custom_"


@dataclass(frozen=True)
class Role:
    id: str
    name: str
    description: str
    permissions: FrozenSet[Permission]
    is_system_role: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": [p.value for p in Permission if p in self.permissions],
            "is_system_role": self.is_system_role,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


DEFAULT_ROLES = (
    {
        "id": DEFAULT_ROLE_ID,
        "name": "User",
        "description": "Standard user with basic access",
        "permissions": (Permission.VIEW_DASHBOARD, Permission.ACCESS_API),
    },
    {
        "id": ADMIN_ROLE_ID,
        "name": "Administrator",
        "description": "Full system administrator with all permissions",
        "permissions": tuple(Permission),
    },
    {
        "id": "role_user_manager",
        "name": "User Manager",
        "description": "Can manage users but not system settings",
        "permissions": (
            Permission.VIEW_DASHBOARD,
            Permission.VIEW_USERS,
            Permission.ADD_USER,
            Permission.EDIT_USER,
            Permission.VIEW_USER_DETAILS,
            Permission.VIEW_ROLES,
            Permission.ASSIGN_ROLES,
            Permission.ACCESS_API,
        ),
    },
    {
        "id": "role_viewer",
        "name": "Viewer",
        "description": "Read-only access to most system information",
        "permissions": (
            Permission.VIEW_DASHBOARD,
            Permission.VIEW_USERS,
            Permission.VIEW_USER_DETAILS,
            Permission.VIEW_ROLES,
            Permission.VIEW_SYSTEM_LOGS,
            Permission.VIEW_ANALYTICS,
            Permission.ACCESS_API,
        ),
    },
)


class RoleService:
    """Thread-safe role registry"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._roles: Dict[str, Role] = {}
        self._lock = threading.RLock()
        self.initialize()

    def initialize(self) -> None:
        """Seed the system roles; existing custom roles are kept"""
        now = self._clock()
        with self._lock:
            for definition in DEFAULT_ROLES:
                self._roles[definition["id"]] = Role(
                    id=definition["id"],
                    name=definition["name"],
                    description=definition["description"],
                    permissions=frozenset(definition["permissions"]),
                    is_system_role=True,
                    created_at=now,
                    updated_at=now,
                )

    def list_roles(self) -> List[Role]:
        with self._lock:
            return list(self._roles.values())

    def get_role(self, role_id: str) -> Optional[Role]:
        with self._lock:
            return self._roles.get(role_id)

    def role_exists(self, role_id: str) -> bool:
        return self.get_role(role_id) is not None

    def get_default_role(self) -> Role:
        return self._roles[DEFAULT_ROLE_ID]

    def get_role_permissions(self, role_id: Optional[str]) -> FrozenSet[Permission]:
        """Permissions of a role; unknown roles grant nothing"""
        role = self.get_role(role_id) if role_id else None
        if role is None:
            if role_id:
                logger.warning(f"Permission lookup for unknown role {role_id}")
            return frozenset()
        return role.permissions

    def get_assignable_roles(self, user_permissions: Iterable[Permission]) -> List[Role]:
        held = list(user_permissions)
        return [role for role in self.list_roles() if can_assign_role(held, role.id)]

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        lowered = name.strip().lower()
        return any(
            role.name.lower() == lowered and role.id != exclude_id
            for role in self._roles.values()
        )

    def _validated_permissions(self, role_id: str, permissions: Iterable[Any]) -> FrozenSet[Permission]:
        permissions = list(permissions)
        errors = validate_role_permissions(role_id, permissions)
        if errors:
            raise RoleValidationError(
                "Invalid role permissions", details={"details": errors}
            )
        valid, _ = parse_permissions(permissions)
        return frozenset(valid)

    def create_role(self, name: str, description: str, permissions: Iterable[Any]) -> Role:
        """
        Create a custom role
        Raises:
            RoleValidationError: empty or duplicate name, unknown permissions
        """
        name = (name or "").strip()
        if not name:
            raise RoleValidationError("Role name is required")

        role_id = f"{CUSTOM_ROLE_PREFIX}{secrets.token_hex(6)}"
        granted = self._validated_permissions(role_id, permissions)

        with self._lock:
            if self._name_taken(name):
                raise RoleValidationError("Role name already exists")
            now = self._clock()
            role = Role(
                id=role_id,
                name=name,
                description=(description or "").strip(),
                permissions=granted,
                is_system_role=False,
                created_at=now,
                updated_at=now,
            )
            self._roles[role.id] = role

        logger.info(f"Role created: {role.id} ({role.name})")
        return role

    def update_role(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[Iterable[Any]] = None,
    ) -> Role:
        """
        Update a role
        Raises:
            RoleNotFoundError: unknown role id
            RoleValidationError: renaming a system role, duplicate name,
                unknown permissions, or stripping critical permissions from
                the administrator role
        """
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                raise RoleNotFoundError()

            changes: Dict[str, Any] = {}
            if name is not None and name.strip() != role.name:
                if role.is_system_role:
                    raise RoleValidationError("Cannot modify name of system role")
                if not name.strip():
                    raise RoleValidationError("Role name is required")
                if self._name_taken(name, exclude_id=role_id):
                    raise RoleValidationError("Role name already exists")
                changes["name"] = name.strip()

            if description is not None and description.strip() != role.description:
                if role.is_system_role:
                    raise RoleValidationError("Cannot modify description of system role")
                changes["description"] = description.strip()

            if permissions is not None:
                changes["permissions"] = self._validated_permissions(role_id, permissions)

            updated = replace(role, updated_at=self._clock(), **changes)
            self._roles[role_id] = updated

        logger.info(f"Role updated: {role_id}")
        return updated

    def delete_role(self, role_id: str) -> None:
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                raise RoleNotFoundError()
            if role.is_system_role:
                raise SystemRoleError("Cannot delete system role")
            del self._roles[role_id]
        logger.info(f"Role deleted: {role_id}")
