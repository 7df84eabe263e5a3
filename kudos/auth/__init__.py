from .authorization import AuthorizationOptions, AuthorizationPipeline, AuthorizationResult
from .csrf import CSRFGuard
from .jwt_handler import JWTHandler
from .permissions import Permission, PermissionCategory
from .roles import Role, RoleService
from .service import AuthenticationService
from .session import SecureSession, SessionSecurityManager, SessionUser
from .user_manager import UserManager

__all__ = [
    "AuthorizationOptions",
    "AuthorizationPipeline",
    "AuthorizationResult",
    "CSRFGuard",
    "JWTHandler",
    "Permission",
    "PermissionCategory",
    "Role",
    "RoleService",
    "AuthenticationService",
    "SecureSession",
    "SessionSecurityManager",
    "SessionUser",
    "UserManager",
]
