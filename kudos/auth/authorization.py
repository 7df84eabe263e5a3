"""
Request authorization pipeline

A request passes an ordered list of gates: session authentication, CSRF,
role allow-list, then permissions. Each gate either lets the request
continue (returns None) or returns the error that ends it. The first
error wins and later gates never run.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    CSRFError,
    KudosError,
    SecurityContextViolation,
)
from ..core.logging import get_logger
from .context import RequestContext
from .csrf import CSRFGuard
from .permissions import Permission, check_permission
from .session import SecureSession, SessionSecurityManager

logger = get_logger(__name__)

SESSION_COOKIE = "session"


@dataclass(frozen=True)
class AuthorizationOptions:
    """Per-route access requirements"""

    required_permissions: Sequence[Permission] = ()
    require_all_permissions: bool = False
    allowed_roles: Sequence[str] = ()
    require_csrf: bool = True


@dataclass
class AuthorizationContext:
    request: RequestContext
    options: AuthorizationOptions
    session: Optional[SecureSession] = None


@dataclass
class AuthorizationResult:
    authorized: bool
    session: Optional[SecureSession] = None
    error: Optional[KudosError] = None
    gate: Optional[str] = None


Gate = Callable[[AuthorizationContext], Optional[KudosError]]


class AuthorizationPipeline:
    """Runs the authorization gates in a fixed order"""

    def __init__(
        self,
        sessions: SessionSecurityManager,
        csrf: CSRFGuard,
        cookie_name: str = SESSION_COOKIE,
    ):
        self.sessions = sessions
        self.csrf = csrf
        self.cookie_name = cookie_name
        self.gates: List[Gate] = [
            self.authenticate,
            self.check_csrf,
            self.check_role,
            self.check_permissions,
        ]

    def authorize(
        self, request: RequestContext, options: Optional[AuthorizationOptions] = None
    ) -> AuthorizationResult:
        ctx = AuthorizationContext(request=request, options=options or AuthorizationOptions())

        for gate in self.gates:
            error = gate(ctx)
            if error is not None:
                logger.info(
                    f"Request denied at {gate.__name__}: {request.method} {request.path} "
                    f"({error.status_code})",
                    extra={"user_id": ctx.session.user_id if ctx.session else None},
                )
                return AuthorizationResult(
                    authorized=False, session=ctx.session, error=error, gate=gate.__name__
                )

        return AuthorizationResult(authorized=True, session=ctx.session)

    def authenticate(self, ctx: AuthorizationContext) -> Optional[KudosError]:
        token = ctx.request.cookie(self.cookie_name)
        if not token:
            return AuthenticationError()

        result = self.sessions.validate_token(token, ctx.request)
        if not result.valid:
            if result.suspicious:
                return SecurityContextViolation()
            return AuthenticationError()

        ctx.session = result.session
        return None

    def check_csrf(self, ctx: AuthorizationContext) -> Optional[KudosError]:
        if not ctx.options.require_csrf:
            return None

        result = self.csrf.validate(ctx.request, ctx.session)
        if not result.valid:
            return CSRFError(result.reason)
        return None

    def check_role(self, ctx: AuthorizationContext) -> Optional[KudosError]:
        allowed_roles = list(ctx.options.allowed_roles)
        if not allowed_roles or ctx.session.role_id in allowed_roles:
            return None

        return AuthorizationError(
            "Insufficient role permissions",
            details={"required": allowed_roles, "user": ctx.session.role_id},
        )

    def check_permissions(self, ctx: AuthorizationContext) -> Optional[KudosError]:
        required = list(ctx.options.required_permissions)
        if not required:
            return None

        result = check_permission(
            ctx.session.permissions, required, require_all=ctx.options.require_all_permissions
        )
        if result.allowed:
            return None

        return AuthorizationError(
            "Insufficient permissions",
            details={
                "required": [p.value for p in result.required],
                "user": [p.value for p in result.held],
            },
        )
