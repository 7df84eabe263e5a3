"""
Tests for CSRF protection
"""
import pytest

from kudos.auth.csrf import CSRFGuard, extract_csrf_token, requires_csrf
from kudos.security.audit import SecurityEventType

from conftest import make_request


class TestCSRFHelpers:
    @pytest.mark.parametrize("method", ["GET", "head", "OPTIONS"])
    def test_safe_methods_exempt(self, method):
        assert not requires_csrf(method)

    @pytest.mark.parametrize("method", ["POST", "PUT", "patch", "DELETE"])
    def test_state_changing_methods_checked(self, method):
        assert requires_csrf(method)

    def test_token_from_header(self):
        request = make_request(headers={"X-CSRF-Token": "csrf_abc"})
        assert extract_csrf_token(request) == "csrf_abc"

    def test_token_from_authorization_header(self):
        request = make_request(headers={"Authorization": "CSRF csrf_abc"})
        assert extract_csrf_token(request) == "csrf_abc"

    def test_bearer_authorization_ignored(self):
        request = make_request(headers={"Authorization": "Bearer csrf_abc"})
        assert extract_csrf_token(request) is None


class TestCSRFGuard:
    """Test token validation against the session"""

    @pytest.fixture
    def session(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())
        return session

    def test_get_needs_no_token(self, csrf_guard, session):
        assert csrf_guard.validate(make_request(method="GET"), session).valid

    def test_matching_token(self, csrf_guard, session):
        request = make_request(method="POST", headers={"X-CSRF-Token": session.csrf_token})
        assert csrf_guard.validate(request, session).valid

    def test_missing_token(self, csrf_guard, session, session_manager):
        result = csrf_guard.validate(make_request(method="POST"), session)

        assert not result.valid
        assert result.reason == "CSRF token required for this request"
        event = session_manager.get_security_events(limit=1)[0]
        assert event.event_type == SecurityEventType.CSRF_TOKEN_MISMATCH
        assert event.details["received"] is None

    def test_wrong_token(self, csrf_guard, session, session_manager):
        request = make_request(
            method="DELETE", ip="203.0.113.99", headers={"X-CSRF-Token": "csrf_forged_token"}
        )

        result = csrf_guard.validate(request, session)

        assert not result.valid
        assert result.reason == "Invalid CSRF token"
        event = session_manager.get_security_events(limit=1)[0]
        assert event.ip_address == "203.0.113.99"
        assert event.details["expected"] == session.csrf_token[:8] + "..."
        assert event.details["received"] == "csrf_for..."

    def test_add_token_to_response(self):
        headers = {}
        CSRFGuard.add_token_to_response(headers, "csrf_abc")
        assert headers == {"X-CSRF-Token": "csrf_abc"}
