"""Rate limiting and audit middleware for the Kudos API."""

import time
import uuid
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.context import RequestContext
from ..core.logging import AuditLogAdapter, get_logger
from ..core.rate_limiter import RateLimiter, RateLimitRule, get_ip_key
from ..core.security_headers import configure_security_headers

logger = get_logger(__name__)

RuleKey = Tuple[str, str]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies fixed-window limits to configured (method, path) pairs."""

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        rules: Dict[RuleKey, RateLimitRule],
        key_func: Callable[[RequestContext], str] = get_ip_key,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.rules = {(method.upper(), path): rule for (method, path), rule in rules.items()}
        self.key_func = key_func

    def _rule_for(self, request: Request) -> Optional[RateLimitRule]:
        return self.rules.get((request.method.upper(), request.url.path))

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rule = self._rule_for(request)
        if rule is None:
            return await call_next(request)

        key = self.key_func(RequestContext.from_request(request))
        result = await self.limiter.check(key, rule.max_requests, rule.window_ms)

        if not result.allowed:
            logger.warning(
                f"Rate limit exceeded - key={key} method={request.method} path={request.url.path}"
            )
            return JSONResponse(
                status_code=429,
                content=result.to_error_body(),
                headers=result.headers(),
            )

        response = await call_next(request)

        if rule.skip_successful_requests and response.status_code < 400:
            await self.limiter.release(key)
            result.remaining = min(result.limit, result.remaining + 1)

        for name, value in result.headers().items():
            response.headers[name] = value
        return response


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Log all API requests for audit purposes."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        client_ip = request.client.host if request.client else "unknown"
        audit = AuditLogAdapter(logger, {"request_id": request_id, "ip_address": client_ip})

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            audit.error(
                f"API Request Failed - method={request.method} path={request.url.path} "
                f"error={type(e).__name__} duration={duration:.3f}s",
                extra={"user_id": getattr(request.state, "user_id", None)},
            )
            raise

        duration = time.time() - start_time
        audit.info(
            f"API Request - method={request.method} path={request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s",
            extra={"user_id": getattr(request.state, "user_id", "anonymous")},
        )
        response.headers["X-Request-ID"] = request_id
        return response


def setup_middleware(app, services) -> None:
    """Configure all middleware for the application."""
    settings = services.settings

    # Added last runs first: headers wrap everything, then audit, then limits
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=services.rate_limiter,
            rules={
                ("POST", "/api/auth/login"): RateLimitRule(
                    max_requests=settings.rate_limit_max_requests,
                    window_ms=settings.rate_limit_window_ms,
                    skip_successful_requests=settings.rate_limit_skip_successful,
                ),
            },
        )
    app.add_middleware(AuditLoggingMiddleware)
    configure_security_headers(app, settings)
