"""
Tests for session creation, binding validation and cleanup
"""
from datetime import datetime, timedelta, timezone

import pytest

from kudos.auth.jwt_handler import JWTHandler
from kudos.auth.permissions import Permission
from kudos.auth.session import (
    BindingPolicy,
    SecureSession,
    SessionSecurityConfig,
    SessionSecurityManager,
    SessionUser,
    browser_signature,
    ip_addresses_match,
    user_agents_match,
)
from kudos.security.audit import SecurityEventType, Severity

from conftest import CHROME_UA, TEST_SECRET, FakeClock, make_request

FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


class TestBindingRules:
    """Test IP and user agent tolerance"""

    def test_same_subnet_matches(self):
        assert ip_addresses_match("192.168.1.10", "192.168.1.200")

    def test_different_subnet_rejected(self):
        assert not ip_addresses_match("192.168.1.10", "192.168.2.10")

    def test_loopback_aliases_match(self):
        assert ip_addresses_match("127.0.0.1", "::1")
        assert ip_addresses_match("localhost", "127.0.0.1")

    def test_loopback_aliases_can_be_disabled(self):
        policy = BindingPolicy(allow_loopback_aliases=False)
        assert not ip_addresses_match("127.0.0.1", "::1", policy)

    def test_exact_match_policy(self):
        policy = BindingPolicy(subnet_octets=0)
        assert not ip_addresses_match("10.0.0.1", "10.0.0.2", policy)
        assert ip_addresses_match("10.0.0.1", "10.0.0.1", policy)

    def test_ipv6_requires_exact_match(self):
        assert not ip_addresses_match("2001:db8::1", "2001:db8::2")

    def test_unparseable_addresses_only_match_exactly(self):
        assert ip_addresses_match("testclient", "testclient")
        assert not ip_addresses_match("testclient", "10.0.0.1")

    def test_browser_minor_update_matches(self):
        updated = CHROME_UA.replace("Chrome/120.0.6099.109", "Chrome/120.0.6099.224")
        assert user_agents_match(CHROME_UA, updated)

    def test_browser_major_change_rejected(self):
        upgraded = CHROME_UA.replace("Chrome/120", "Chrome/121")
        assert not user_agents_match(CHROME_UA, upgraded)

    def test_different_browser_rejected(self):
        assert not user_agents_match(CHROME_UA, FIREFOX_UA)

    def test_unknown_agents_compare_whole_string(self):
        assert browser_signature("curl/8.4.0") == "curl/8.4.0"
        assert not user_agents_match("curl/8.4.0", "curl/8.5.0")


class TestSessionCreation:
    """Test session creation and token round trip"""

    def test_create_session_binds_client(self, session_manager, session_user):
        session, token = session_manager.create_session(session_user, make_request())

        assert session.session_id.startswith("sess_")
        assert session.csrf_token.startswith("csrf_")
        assert session.ip_address == "203.0.113.10"
        assert session.user_agent == CHROME_UA
        assert session.expires_at - session.created_at == timedelta(days=7)
        assert session_manager.get_session(session.session_id) == session
        assert isinstance(token, str)

    def test_session_ids_are_unique(self, session_manager, session_user):
        first, _ = session_manager.create_session(session_user, make_request())
        second, _ = session_manager.create_session(session_user, make_request())

        assert first.session_id != second.session_id
        assert first.csrf_token != second.csrf_token

    def test_permissions_follow_catalog_order(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())
        assert [p.value for p in session.permissions] == ["view_dashboard", "access_api"]

    def test_missing_client_details_use_defaults(self, session_manager, session_user):
        from kudos.auth.context import RequestContext

        session, _ = session_manager.create_session(session_user, RequestContext())

        assert session.ip_address == "127.0.0.1"
        assert session.user_agent == "Unknown"

    def test_session_serialisation_round_trip(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())
        assert SecureSession.from_dict(session.to_dict()) == session

    def test_creation_logs_event(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())

        events = session_manager.get_user_security_events(session_user.user_id)
        assert events[0].event_type == SecurityEventType.SESSION_CREATED
        assert events[0].session_id == session.session_id

    def test_concurrent_session_cap_evicts_oldest(self, codec, clock, session_user):
        manager = SessionSecurityManager(
            codec, SessionSecurityConfig(max_sessions_per_user=2), clock=clock
        )
        first, _ = manager.create_session(session_user, make_request())
        clock.advance(seconds=1)
        manager.create_session(session_user, make_request())
        clock.advance(seconds=1)
        manager.create_session(session_user, make_request())

        assert manager.get_session(first.session_id) is None
        assert len(manager.get_user_sessions(session_user.user_id)) == 2
        types = [e.event_type for e in manager.get_user_security_events(session_user.user_id)]
        assert SecurityEventType.CONCURRENT_SESSION in types


class TestSessionValidation:
    """Test validation against the registry and request context"""

    def test_valid_request(self, session_manager, session_user, clock):
        session, token = session_manager.create_session(session_user, make_request())
        clock.advance(minutes=5)

        result = session_manager.validate_token(token, make_request(ip="203.0.113.77"))

        assert result.valid
        assert result.session.last_activity == clock.current
        assert session_manager.get_session(session.session_id).last_activity == clock.current

    def test_repeated_validation_keeps_single_session(self, session_manager, session_user):
        _, token = session_manager.create_session(session_user, make_request())

        for _ in range(3):
            assert session_manager.validate_token(token, make_request()).valid
        assert len(session_manager.sessions) == 1

    def test_invalid_token(self, session_manager):
        result = session_manager.validate_token("garbage", make_request())

        assert not result.valid
        assert result.reason == "Invalid or expired token"
        assert result.requires_reauth

    def test_token_from_other_secret(self, session_manager, session_user, clock):
        other = SessionSecurityManager(JWTHandler("x" * 40), clock=clock)
        _, token = other.create_session(session_user, make_request())

        assert not session_manager.validate_token(token, make_request()).valid

    def test_unregistered_session_rejected(self, session_manager, session_user):
        session, token = session_manager.create_session(session_user, make_request())
        session_manager.invalidate_session(session.session_id)

        result = session_manager.validate_token(token, make_request())

        assert not result.valid
        assert result.reason == "Session not found"

    def test_expired_session(self, session_manager, session_user, clock):
        session, token = session_manager.create_session(session_user, make_request())
        clock.advance(days=7, seconds=1)

        result = session_manager.validate_token(token, make_request())

        assert not result.valid
        assert result.reason == "Session expired"
        assert not result.suspicious
        assert session_manager.get_session(session.session_id) is None

    def test_token_past_its_exp_is_logged_as_expired(self, codec, session_user):
        """A token whose exp has passed still reaches the expiry check"""
        clock = FakeClock(start=datetime.now(timezone.utc) - timedelta(days=8))
        manager = SessionSecurityManager(codec, SessionSecurityConfig(), clock=clock)
        session, token = manager.create_session(session_user, make_request())
        clock.current = datetime.now(timezone.utc)

        result = manager.validate_token(token, make_request())

        assert not result.valid
        assert result.reason == "Session expired"
        assert manager.get_session(session.session_id) is None
        expired = [
            e for e in manager.get_user_security_events(session_user.user_id)
            if e.event_type == SecurityEventType.SESSION_EXPIRED
        ]
        assert len(expired) == 1
        assert expired[0].severity == Severity.LOW

    def test_refresh_role_updates_matching_sessions(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())
        other, _ = session_manager.create_session(
            SessionUser("user_viewer", "viewer@kudos.test", "Viewer", "Viewer", "role_viewer",
                        (Permission.VIEW_DASHBOARD,)),
            make_request(),
        )

        count = session_manager.refresh_role(
            "role_user", "Staff", [Permission.ACCESS_API, Permission.VIEW_ANALYTICS]
        )

        assert count == 1
        refreshed = session_manager.get_session(session.session_id)
        assert refreshed.role == "Staff"
        assert refreshed.permissions == (Permission.VIEW_ANALYTICS, Permission.ACCESS_API)
        assert session_manager.get_session(other.session_id).permissions == (Permission.VIEW_DASHBOARD,)

    def test_ip_mismatch_is_violation(self, session_manager, session_user):
        session, token = session_manager.create_session(session_user, make_request())

        result = session_manager.validate_token(token, make_request(ip="198.51.100.7"))

        assert not result.valid
        assert result.reason == "IP address mismatch detected"
        assert result.suspicious and result.requires_reauth
        assert session_manager.get_session(session.session_id) is None
        event = session_manager.get_security_events(severity=Severity.HIGH)[0]
        assert event.event_type == SecurityEventType.IP_MISMATCH
        assert event.details == {"original_ip": "203.0.113.10", "current_ip": "198.51.100.7"}

    def test_user_agent_mismatch_is_violation(self, session_manager, session_user):
        _, token = session_manager.create_session(session_user, make_request())

        result = session_manager.validate_token(token, make_request(user_agent=FIREFOX_UA))

        assert not result.valid
        assert result.reason == "User agent mismatch detected"
        event = session_manager.get_security_events(severity=Severity.MEDIUM)[0]
        assert event.event_type == SecurityEventType.USER_AGENT_MISMATCH

    def test_validate_session_without_token(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())
        assert session_manager.validate_session(session, make_request()).valid


class TestSuspiciousActivity:
    """Test escalation of repeated high severity events"""

    def _log_high(self, manager, ip, count):
        for _ in range(count):
            manager.log_security_event(
                SecurityEventType.CSRF_TOKEN_MISMATCH, Severity.HIGH, ip_address=ip
            )

    def test_threshold_flags_ip(self, session_manager):
        self._log_high(session_manager, "198.51.100.7", 2)
        assert not session_manager.is_suspicious_ip("198.51.100.7")

        self._log_high(session_manager, "198.51.100.7", 1)
        assert session_manager.is_suspicious_ip("198.51.100.7")

    def test_low_severity_does_not_escalate(self, session_manager):
        for _ in range(5):
            session_manager.log_security_event(
                SecurityEventType.SESSION_VALIDATED, Severity.LOW, ip_address="198.51.100.7"
            )
        assert not session_manager.is_suspicious_ip("198.51.100.7")

    def test_events_outside_window_do_not_count(self, session_manager, clock):
        self._log_high(session_manager, "198.51.100.7", 2)
        clock.advance(minutes=61)
        self._log_high(session_manager, "198.51.100.7", 1)

        assert not session_manager.is_suspicious_ip("198.51.100.7")

    def test_flag_keeps_first_timestamp(self, session_manager, clock):
        self._log_high(session_manager, "198.51.100.7", 3)
        flagged_at = session_manager.suspicious_ips.get("198.51.100.7")
        clock.advance(minutes=10)
        self._log_high(session_manager, "198.51.100.7", 1)

        assert session_manager.suspicious_ips.get("198.51.100.7") == flagged_at

    def test_flag_expires_after_ttl(self, session_manager, clock):
        self._log_high(session_manager, "198.51.100.7", 3)
        clock.advance(hours=24, seconds=1)

        assert not session_manager.is_suspicious_ip("198.51.100.7")

    def test_flagged_ip_rejects_valid_session(self, session_manager, session_user):
        session, token = session_manager.create_session(session_user, make_request())
        self._log_high(session_manager, "203.0.113.10", 3)

        result = session_manager.validate_token(token, make_request())

        assert not result.valid
        assert result.reason == "Suspicious activity detected"
        assert session_manager.get_security_events(severity=Severity.CRITICAL)


class TestInvalidation:
    """Test logout paths"""

    def test_invalidate_session(self, session_manager, session_user):
        session, _ = session_manager.create_session(session_user, make_request())

        assert session_manager.invalidate_session(session.session_id)
        assert not session_manager.invalidate_session(session.session_id)
        event = session_manager.get_user_security_events(session_user.user_id)[0]
        assert event.event_type == SecurityEventType.SESSION_INVALIDATED
        assert event.details == {"reason": "User logout"}

    def test_invalidate_user_sessions(self, session_manager, session_user):
        for _ in range(3):
            session_manager.create_session(session_user, make_request())

        assert session_manager.invalidate_user_sessions(session_user.user_id) == 3
        assert session_manager.get_user_sessions(session_user.user_id) == []


class TestCleanup:
    """Test periodic and memory pressure cleanup"""

    def test_cleanup_removes_expired_sessions(self, session_manager, session_user, clock):
        session_manager.create_session(session_user, make_request())
        clock.advance(days=8)

        removed = session_manager.cleanup_expired_sessions()

        assert removed["sessions"] == 1
        assert len(session_manager.sessions) == 0
        assert session_manager.last_cleanup == clock.current

    def test_cleanup_prunes_old_events(self, session_manager, clock):
        session_manager.log_security_event(SecurityEventType.SESSION_CREATED, Severity.LOW)
        clock.advance(days=8)
        session_manager.log_security_event(SecurityEventType.SESSION_CREATED, Severity.LOW)

        assert session_manager.cleanup_expired_sessions()["events"] == 1
        assert len(session_manager.event_log) == 1

    def test_memory_check_runs_aggressive_cleanup(self, codec, clock, session_user):
        manager = SessionSecurityManager(
            codec, SessionSecurityConfig(max_sessions_threshold=1), clock=clock
        )
        manager.create_session(session_user, make_request())
        clock.advance(hours=2)
        manager.create_session(session_user, make_request())

        assert manager.perform_memory_check()
        assert len(manager.sessions) == 1

    def test_memory_check_idle_under_threshold(self, session_manager, session_user):
        session_manager.create_session(session_user, make_request())

        assert not session_manager.perform_memory_check()
        assert session_manager.last_memory_check is not None

    def test_force_cleanup_all(self, session_manager, session_user):
        session_manager.create_session(session_user, make_request())

        counts = session_manager.force_cleanup_all()

        assert counts["sessions"] == 1
        assert len(session_manager.sessions) == 0
        assert len(session_manager.event_log) == 0

    def test_memory_stats(self, session_manager, session_user):
        session_manager.create_session(session_user, make_request())

        stats = session_manager.get_memory_stats()

        assert stats["active_sessions"] == 1
        assert stats["security_events"] == 1
        assert stats["estimated_memory_usage"].endswith(" KB")
        assert stats["thresholds"]["sessions"] == 10000
