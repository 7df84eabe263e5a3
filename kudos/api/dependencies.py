"""
Service wiring and FastAPI dependencies
"""
from dataclasses import dataclass
from typing import Optional, Sequence

from fastapi import Request, Response

from ..auth.authorization import AuthorizationOptions, AuthorizationPipeline
from ..auth.cleanup import SessionCleanupScheduler
from ..auth.context import RequestContext
from ..auth.csrf import CSRFGuard
from ..auth.jwt_handler import JWTHandler
from ..auth.permissions import Permission
from ..auth.roles import RoleService
from ..auth.service import AuthenticationService, create_password_context
from ..auth.session import SecureSession, SessionSecurityConfig, SessionSecurityManager
from ..auth.user_manager import UserManager
from ..core.config import Settings
from ..core.rate_limiter import MemoryRateLimitStore, RateLimiter, RedisRateLimitStore
from ..db.repository import JsonUserRepository, UserRepository


@dataclass
class Services:
    settings: Settings
    codec: JWTHandler
    sessions: SessionSecurityManager
    csrf: CSRFGuard
    pipeline: AuthorizationPipeline
    rate_limiter: RateLimiter
    roles: RoleService
    users: UserRepository
    auth: AuthenticationService
    user_manager: UserManager
    cleanup: SessionCleanupScheduler


def build_services(
    settings: Settings,
    users: Optional[UserRepository] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> Services:
    """Create every service for one application instance"""
    codec = JWTHandler(settings.jwt_secret, settings.jwt_algorithm)
    sessions = SessionSecurityManager(codec, SessionSecurityConfig.from_settings(settings))
    csrf = CSRFGuard(sessions)
    pipeline = AuthorizationPipeline(sessions, csrf, cookie_name=settings.session_cookie_name)

    if rate_limiter is None:
        store = (
            RedisRateLimitStore(redis_url=settings.redis_url)
            if settings.redis_url
            else MemoryRateLimitStore()
        )
        rate_limiter = RateLimiter(store, cleanup_probability=settings.rate_limit_cleanup_probability)

    users = users or JsonUserRepository(settings.users_file, settings.users_cache_ttl_seconds)
    auth = AuthenticationService(
        users,
        create_password_context(settings.password_hash_rounds, settings.password_hash_memory_kib),
    )
    roles = RoleService()

    return Services(
        settings=settings,
        codec=codec,
        sessions=sessions,
        csrf=csrf,
        pipeline=pipeline,
        rate_limiter=rate_limiter,
        roles=roles,
        users=users,
        auth=auth,
        user_manager=UserManager(users, auth, roles, sessions),
        cleanup=SessionCleanupScheduler(
            sessions,
            cleanup_interval=settings.session_cleanup_interval_seconds,
            memory_check_interval=settings.memory_check_interval_seconds,
            extra_sweeps=[rate_limiter.sweep],
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


class Authorize:
    """
    Route dependency running the authorization pipeline
    Usage:
        session: SecureSession = Depends(Authorize(Permission.VIEW_USERS))
    """

    def __init__(
        self,
        *permissions: Permission,
        require_all: bool = False,
        roles: Sequence[str] = (),
        csrf: bool = True,
    ):
        self.options = AuthorizationOptions(
            required_permissions=tuple(permissions),
            require_all_permissions=require_all,
            allowed_roles=tuple(roles),
            require_csrf=csrf,
        )

    async def __call__(self, request: Request, response: Response) -> SecureSession:
        services = get_services(request)
        result = services.pipeline.authorize(RequestContext.from_request(request), self.options)

        if result.session is not None:
            request.state.session = result.session
            request.state.user_id = result.session.user_id

        if not result.authorized:
            raise result.error

        request.state.authorized = True
        services.csrf.add_token_to_response(response.headers, result.session.csrf_token)
        return result.session
