"""
Permission catalog and permission-check predicates

Permissions form a closed enum. Every member has exactly one metadata entry
in PERMISSION_DEFINITIONS; the module refuses to import otherwise.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple


class Permission(str, Enum):
    """Every capability a role can grant"""

    # Dashboard
    VIEW_DASHBOARD = "view_dashboard"

    # User management
    VIEW_USERS = "view_users"
    ADD_USER = "add_user"
    EDIT_USER = "edit_user"
    REMOVE_USER = "remove_user"
    VIEW_USER_DETAILS = "view_user_details"

    # Role management
    VIEW_ROLES = "view_roles"
    MANAGE_ROLES = "manage_roles"
    ASSIGN_ROLES = "assign_roles"

    # System administration
    VIEW_SYSTEM_LOGS = "view_system_logs"
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"
    VIEW_ANALYTICS = "view_analytics"

    # Security
    VIEW_SECURITY_LOGS = "view_security_logs"
    MANAGE_SECURITY_SETTINGS = "manage_security_settings"
    FORCE_LOGOUT_USERS = "force_logout_users"

    # API
    ACCESS_API = "access_api"
    ADMIN_API_ACCESS = "admin_api_access"


class PermissionCategory(str, Enum):
    DASHBOARD = "dashboard"
    USER_MANAGEMENT = "user_management"
    ROLE_MANAGEMENT = "role_management"
    SYSTEM_ADMIN = "system_admin"
    SECURITY = "security"
    API = "api"


@dataclass(frozen=True)
class PermissionMetadata:
    id: Permission
    name: str
    description: str
    category: PermissionCategory
    is_system_critical: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "is_system_critical": self.is_system_critical,
        }


def _meta(
    permission: Permission,
    name: str,
    description: str,
    category: PermissionCategory,
    critical: bool = False,
) -> Tuple[Permission, PermissionMetadata]:
    return permission, PermissionMetadata(permission, name, description, category, critical)


PERMISSION_DEFINITIONS: Dict[Permission, PermissionMetadata] = dict(
    [
        _meta(Permission.VIEW_DASHBOARD, "View Dashboard",
              "Access to the main dashboard", PermissionCategory.DASHBOARD),
        _meta(Permission.VIEW_USERS, "View Users",
              "View list of users in the system", PermissionCategory.USER_MANAGEMENT),
        _meta(Permission.ADD_USER, "Add User",
              "Create new user accounts", PermissionCategory.USER_MANAGEMENT, True),
        _meta(Permission.EDIT_USER, "Edit User",
              "Modify existing user accounts", PermissionCategory.USER_MANAGEMENT, True),
        _meta(Permission.REMOVE_USER, "Remove User",
              "Delete user accounts", PermissionCategory.USER_MANAGEMENT, True),
        _meta(Permission.VIEW_USER_DETAILS, "View User Details",
              "Access detailed user information", PermissionCategory.USER_MANAGEMENT),
        _meta(Permission.VIEW_ROLES, "View Roles",
              "View available roles and their permissions", PermissionCategory.ROLE_MANAGEMENT),
        _meta(Permission.MANAGE_ROLES, "Manage Roles",
              "Create, edit, and delete roles", PermissionCategory.ROLE_MANAGEMENT, True),
        _meta(Permission.ASSIGN_ROLES, "Assign Roles",
              "Assign roles to users", PermissionCategory.ROLE_MANAGEMENT, True),
        _meta(Permission.VIEW_SYSTEM_LOGS, "View System Logs",
              "Access system logs and audit trails", PermissionCategory.SYSTEM_ADMIN),
        _meta(Permission.MANAGE_SYSTEM_SETTINGS, "Manage System Settings",
              "Configure system-wide settings", PermissionCategory.SYSTEM_ADMIN, True),
        _meta(Permission.VIEW_ANALYTICS, "View Analytics",
              "Access system analytics and reports", PermissionCategory.SYSTEM_ADMIN),
        _meta(Permission.VIEW_SECURITY_LOGS, "View Security Logs",
              "Access security logs and events", PermissionCategory.SECURITY),
        _meta(Permission.MANAGE_SECURITY_SETTINGS, "Manage Security Settings",
              "Configure security policies and settings", PermissionCategory.SECURITY, True),
        _meta(Permission.FORCE_LOGOUT_USERS, "Force Logout Users",
              "Force logout users for security reasons", PermissionCategory.SECURITY, True),
        _meta(Permission.ACCESS_API, "Access API",
              "Basic API access for authenticated users", PermissionCategory.API),
        _meta(Permission.ADMIN_API_ACCESS, "Admin API Access",
              "Access to administrative API endpoints", PermissionCategory.API, True),
    ]
)

_missing = set(Permission) - set(PERMISSION_DEFINITIONS)
if _missing:
    raise RuntimeError(
        "Permissions without metadata: " + ", ".join(sorted(p.value for p in _missing))
    )

SYSTEM_CRITICAL_PERMISSIONS: FrozenSet[Permission] = frozenset(
    p for p, meta in PERMISSION_DEFINITIONS.items() if meta.is_system_critical
)

ADMIN_ROLE_ID = "role_admin"
ROLE_ASSIGNMENT_PERMISSION = Permission.ASSIGN_ROLES
ADMIN_ASSIGNMENT_PERMISSION = Permission.MANAGE_ROLES


@dataclass
class PermissionCheckResult:
    allowed: bool
    reason: Optional[str] = None
    required: List[Permission] = field(default_factory=list)
    held: List[Permission] = field(default_factory=list)


def get_permission_metadata(permission: Permission) -> PermissionMetadata:
    return PERMISSION_DEFINITIONS[Permission(permission)]


def get_permissions_by_category(category: PermissionCategory) -> List[PermissionMetadata]:
    return [meta for meta in PERMISSION_DEFINITIONS.values() if meta.category == category]


def get_all_permissions() -> List[PermissionMetadata]:
    return list(PERMISSION_DEFINITIONS.values())


def is_system_critical_permission(permission: Permission) -> bool:
    return permission in SYSTEM_CRITICAL_PERMISSIONS


def parse_permission(value: object) -> Optional[Permission]:
    """Map a raw value from the wire onto the catalog, or None if unknown"""
    if isinstance(value, Permission):
        return value
    try:
        return Permission(value)
    except ValueError:
        return None


def parse_permissions(values: Iterable[object]) -> Tuple[List[Permission], List[str]]:
    """Split raw values into known permissions and unknown leftovers"""
    valid: List[Permission] = []
    invalid: List[str] = []
    for value in values:
        permission = parse_permission(value)
        if permission is None:
            invalid.append(str(value))
        elif permission not in valid:
            valid.append(permission)
    return valid, invalid


def has_permission(user_permissions: Iterable[Permission], required: Permission) -> bool:
    return required in set(user_permissions)


def has_any_permission(
    user_permissions: Iterable[Permission], required: Iterable[Permission]
) -> bool:
    held = set(user_permissions)
    return any(p in held for p in required)


def has_all_permissions(
    user_permissions: Iterable[Permission], required: Iterable[Permission]
) -> bool:
    held = set(user_permissions)
    return all(p in held for p in required)


def check_permission(
    user_permissions: Sequence[Permission],
    required: Sequence[Permission],
    require_all: bool = False,
) -> PermissionCheckResult:
    """
    Evaluate required permissions against what a user holds
    Args:
        user_permissions: Permissions granted to the user
        required: Permissions the operation needs
        require_all: All of required instead of any one of them
    Returns:
        PermissionCheckResult carrying required vs held for error bodies
    """
    required = list(required)
    held = list(user_permissions)

    if not required:
        return PermissionCheckResult(allowed=True, required=required, held=held)

    if require_all:
        allowed = has_all_permissions(held, required)
        reason = None if allowed else "Missing required permissions"
    else:
        allowed = has_any_permission(held, required)
        reason = None if allowed else "None of the required permissions are held"

    return PermissionCheckResult(allowed=allowed, reason=reason, required=required, held=held)


def get_effective_permissions(permission_sets: Iterable[Iterable[Permission]]) -> FrozenSet[Permission]:
    """Union of several permission sets"""
    effective = set()
    for permissions in permission_sets:
        effective.update(permissions)
    return frozenset(effective)


def validate_role_permissions(role_id: str, permissions: Iterable[object]) -> List[str]:
    """
    Validation errors for a proposed permission set of a role; empty when
    the set is acceptable
    """
    valid, invalid = parse_permissions(permissions)
    errors = [f"Invalid permission: {value}" for value in invalid]

    if role_id == ADMIN_ROLE_ID:
        missing = [p for p in Permission if p in SYSTEM_CRITICAL_PERMISSIONS and p not in valid]
        for permission in missing:
            errors.append(
                f"Administrator role must retain critical permission: {permission.value}"
            )
    return errors


def can_assign_role(user_permissions: Iterable[Permission], role_id: str) -> bool:
    held = set(user_permissions)
    if ROLE_ASSIGNMENT_PERMISSION not in held:
        return False
    if role_id == ADMIN_ROLE_ID:
        return ADMIN_ASSIGNMENT_PERMISSION in held
    return True
