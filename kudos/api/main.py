"""
Kudos API application factory
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..auth.csrf import CSRFGuard
from ..core.config import Settings, get_settings
from ..core.exceptions import KudosError, SecurityContextViolation
from ..core.logging import get_logger, setup_logging
from ..core.rate_limiter import RedisRateLimitStore
from ..core.security_headers import apply_security_headers, build_security_headers
from . import auth_endpoints, role_endpoints, system_endpoints, user_endpoints
from .dependencies import Services, build_services
from .middleware import setup_middleware

logger = get_logger(__name__)


def _field_errors(exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors.append(
            {
                "field": ".".join(location) or "body",
                "message": error.get("msg", "Invalid value"),
            }
        )
    return errors


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    security_headers = build_security_headers(settings.environment)

    @app.exception_handler(KudosError)
    async def kudos_exception_handler(request: Request, exc: KudosError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message} on {request.url.path}")

        response = JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers or None,
        )
        session = getattr(request.state, "session", None)
        # Only requests that passed every gate get the token back
        if session is not None and getattr(request.state, "authorized", False):
            CSRFGuard.add_token_to_response(response.headers, session.csrf_token)
        if isinstance(exc, SecurityContextViolation):
            response.delete_cookie(
                settings.session_cookie_name,
                path="/",
                httponly=True,
                secure=True,
                samesite="strict",
            )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid input", "details": _field_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        response = JSONResponse(status_code=500, content={"error": "Internal server error"})
        # Runs outside the middleware stack
        if settings.security_headers_enabled:
            apply_security_headers(response.headers, security_headers, request.url.path)
        return response


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the Kudos API application"""
    settings = settings or (services.settings if services else get_settings())
    setup_logging(settings.log_level, settings.log_file, settings.log_structured)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        run_scheduler = settings.session_cleanup_enabled and not settings.is_test
        if run_scheduler:
            services.cleanup.start()
        logger.info(f"{settings.app_name} API started ({settings.environment})")
        try:
            yield
        finally:
            if run_scheduler:
                await services.cleanup.stop()
            if isinstance(services.rate_limiter.store, RedisRateLimitStore):
                await services.rate_limiter.store.close()
            logger.info(f"{settings.app_name} API stopped")

    app = FastAPI(
        title="Kudos API",
        description="Session security and access control for the Kudos recognition service",
        version=__version__,
        docs_url=None if settings.is_production else "/api/docs",
        redoc_url=None if settings.is_production else "/api/redoc",
        openapi_url=None if settings.is_production else "/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    setup_middleware(app, services)
    register_exception_handlers(app, settings)

    app.include_router(auth_endpoints.router)
    app.include_router(user_endpoints.router)
    app.include_router(role_endpoints.router)
    app.include_router(system_endpoints.router)

    @app.get("/health", tags=["health"])
    async def health_check():
        return {"status": "healthy", "version": __version__}

    return app
