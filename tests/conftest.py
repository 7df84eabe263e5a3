"""
Pytest configuration and fixtures for Kudos tests
"""
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from kudos.api.dependencies import build_services
from kudos.api.main import create_app
from kudos.auth.context import RequestContext
from kudos.auth.csrf import CSRFGuard
from kudos.auth.jwt_handler import JWTHandler
from kudos.auth.session import SessionSecurityConfig, SessionSecurityManager, SessionUser
from kudos.auth.permissions import Permission
from kudos.auth.service import create_password_context
from kudos.core.config import Settings
from kudos.db.models import User

TEST_SECRET = "kudos-test-signing-secret-0123456789abcdef"
CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)

ADMIN_EMAIL = "admin@kudos.test"
ADMIN_PASSWORD = "Kudos!Secure9x"
MEMBER_EMAIL = "member@kudos.test"
MEMBER_PASSWORD = "Member#Key42q"
MANAGER_EMAIL = "manager@kudos.test"
MANAGER_PASSWORD = "Manager&Key73z"


class FakeClock:
    """Settable clock for session expiry and cleanup tests"""

    def __init__(self, start=None):
        self.current = start or datetime.now(timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec():
    return JWTHandler(TEST_SECRET)


@pytest.fixture
def session_manager(codec, clock):
    """Session manager with a controllable clock"""
    return SessionSecurityManager(codec, SessionSecurityConfig(), clock=clock)


@pytest.fixture
def csrf_guard(session_manager):
    return CSRFGuard(session_manager)


@pytest.fixture
def session_user():
    return SessionUser(
        user_id="user_member",
        email=MEMBER_EMAIL,
        name="Member",
        role="User",
        role_id="role_user",
        permissions=(Permission.VIEW_DASHBOARD, Permission.ACCESS_API),
    )


def make_request(ip="203.0.113.10", user_agent=CHROME_UA, method="GET", path="/api/auth/me",
                 headers=None, cookies=None):
    """Request context as seen behind a proxy"""
    all_headers = {"x-forwarded-for": ip, "user-agent": user_agent}
    all_headers.update(headers or {})
    return RequestContext(method=method, path=path, headers=all_headers, cookies=cookies or {})


@pytest.fixture
def request_context():
    return make_request()


@pytest.fixture
def settings(tmp_path):
    """Test settings with a cheap password hash and a temporary user store"""
    return Settings(
        _env_file=None,
        jwt_secret=TEST_SECRET,
        environment="test",
        users_file=tmp_path / "users.json",
        password_hash_rounds=1,
        password_hash_memory_kib=1024,
        rate_limit_max_requests=5,
        rate_limit_cleanup_probability=0.0,
        log_structured=False,
        redis_url=None,
    )


@pytest.fixture
def seeded_users(settings):
    """Write an admin, a member and a user manager to the users file"""
    context = create_password_context(settings.password_hash_rounds, settings.password_hash_memory_kib)
    users = [
        User(id="user_admin", email=ADMIN_EMAIL, name="Admin",
             role_id="role_admin", password_hash=context.hash(ADMIN_PASSWORD)),
        User(id="user_member", email=MEMBER_EMAIL, name="Member",
             role_id="role_user", password_hash=context.hash(MEMBER_PASSWORD)),
        User(id="user_manager", email=MANAGER_EMAIL, name="Manager",
             role_id="role_user_manager", password_hash=context.hash(MANAGER_PASSWORD)),
    ]
    settings.users_file.parent.mkdir(parents=True, exist_ok=True)
    settings.users_file.write_text(
        json.dumps({"users": [u.model_dump(mode="json") for u in users], "last_updated": None}),
        encoding="utf-8",
    )
    return {user.id: user for user in users}


@pytest.fixture
def services(settings, seeded_users):
    return build_services(settings)


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest.fixture
def client(app):
    """HTTPS test client so secure cookies are sent back"""
    with TestClient(app, base_url="https://testserver") as test_client:
        yield test_client


def login(client, email, password, ip="203.0.113.10", user_agent=CHROME_UA):
    """Log in and return (response, csrf token)"""
    response = client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
        headers={"X-Forwarded-For": ip, "User-Agent": user_agent},
    )
    token = response.json().get("csrf_token") if response.status_code == 200 else None
    return response, token


def client_headers(csrf_token=None, ip="203.0.113.10", user_agent=CHROME_UA):
    headers = {"X-Forwarded-For": ip, "User-Agent": user_agent}
    if csrf_token:
        headers["X-CSRF-Token"] = csrf_token
    return headers
