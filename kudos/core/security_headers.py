"""
Security Headers Middleware
Applies a uniform set of response headers to every response, including
error responses produced outside the middleware stack
"""
from typing import Dict, MutableMapping, Tuple

from fastapi import Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import get_logger

logger = get_logger(__name__)

SENSITIVE_PATH_PREFIXES = ("/api/auth", "/api/admin")
FINGERPRINT_HEADERS = ("Server", "X-Powered-By", "X-AspNet-Version")


def default_csp_directives(development: bool = False) -> Dict[str, str]:
    """Content Security Policy directives"""
    return {
        "default-src": "'self'",
        "script-src": "'self' 'unsafe-inline' 'unsafe-eval'",
        "style-src": "'self' 'unsafe-inline'",
        "img-src": "'self' data: https:",
        "font-src": "'self' data:",
        "connect-src": "'self' ws: wss:" if development else "'self'",
        "frame-ancestors": "'none'",
        "base-uri": "'self'",
        "form-action": "'self'",
    }


def build_csp_header(directives: Dict[str, str]) -> str:
    return "; ".join(f"{key} {value}" if value else key for key, value in directives.items())


def build_security_headers(environment: str = "production") -> Dict[str, str]:
    """
    Header set for an environment
    Development relaxes HSTS, COEP and connect-src so local tooling works
    """
    development = environment == "development"
    return {
        "Content-Security-Policy": build_csp_header(default_csp_directives(development)),
        "Strict-Transport-Security": (
            "max-age=0" if development else "max-age=31536000; includeSubDomains; preload"
        ),
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=(), interest-cohort=()",
        "Cross-Origin-Embedder-Policy": "unsafe-none" if development else "require-corp",
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Permitted-Cross-Domain-Policies": "none",
    }


def is_sensitive_endpoint(path: str) -> bool:
    return path.startswith(SENSITIVE_PATH_PREFIXES)


def apply_security_headers(
    headers: MutableMapping[str, str],
    security_headers: Dict[str, str],
    path: str = "",
) -> None:
    """Write security headers onto a response header mapping"""
    for name, value in security_headers.items():
        headers[name] = value

    if path and is_sensitive_endpoint(path):
        headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
        headers["Pragma"] = "no-cache"

    for name in FINGERPRINT_HEADERS:
        if name in headers:
            del headers[name]


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses
    """

    def __init__(self, app, environment: str = "production", enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled
        self.security_headers = build_security_headers(environment)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        if self.enabled:
            apply_security_headers(response.headers, self.security_headers, request.url.path)
        return response


def configure_security_headers(app, settings) -> Tuple[bool, Dict[str, str]]:
    """
    Register the security header middleware for an application
    Args:
        app: FastAPI application instance
        settings: Application settings
    Returns:
        Whether headers are enabled and the header set in use
    """
    headers = build_security_headers(settings.environment)
    app.add_middleware(
        SecurityHeadersMiddleware,
        environment=settings.environment,
        enabled=settings.security_headers_enabled,
    )
    logger.info(
        f"Security headers {'enabled' if settings.security_headers_enabled else 'disabled'} "
        f"for {settings.environment}"
    )
    return settings.security_headers_enabled, headers
