"""
Framework-neutral request view used by the security layer
"""
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

DEFAULT_CLIENT_IP = "127.0.0.1"
UNKNOWN_USER_AGENT = "Unknown"
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


@dataclass(frozen=True)
class RequestContext:
    """Method, path, headers and cookies of one incoming request"""

    method: str = "GET"
    path: str = "/"
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None

    def __post_init__(self):
        # Header lookups are case-insensitive
        object.__setattr__(
            self, "headers", {k.lower(): v for k, v in self.headers.items()}
        )
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "cookies", dict(self.cookies))

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)

    @classmethod
    def from_request(cls, request: Any) -> "RequestContext":
        """Build a context from a Starlette/FastAPI request"""
        return cls(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            cookies=dict(request.cookies),
            client_host=request.client.host if request.client else None,
        )


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str
    user_agent: str


def get_client_ip(ctx: RequestContext, default: str = DEFAULT_CLIENT_IP) -> str:
    """
    Resolve the caller's IP from proxy headers, then the socket peer,
    then the supplied sentinel
    """
    for header_name in CLIENT_IP_HEADERS:
        value = ctx.header(header_name)
        if value:
            candidate = value.split(",")[0].strip()
            if candidate:
                return candidate
    if ctx.client_host:
        return ctx.client_host
    return default


def extract_client_info(ctx: RequestContext) -> ClientInfo:
    return ClientInfo(
        ip_address=get_client_ip(ctx),
        user_agent=ctx.header("user-agent") or UNKNOWN_USER_AGENT,
    )
