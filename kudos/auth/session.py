"""
Session security manager

Sessions are bound to the IP address and user agent they were created from.
Every request re-checks that binding with a small tolerance band, records
the outcome in the security event log and flags IPs that keep producing
high severity events.
"""
import ipaddress
import re
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.exceptions import InvalidTokenError
from ..core.logging import get_logger
from ..core.stores import InMemoryStore
from ..security.audit import (
    ESCALATING_SEVERITIES,
    SecurityEvent,
    SecurityEventLog,
    SecurityEventType,
    Severity,
)
from .context import RequestContext, extract_client_info
from .jwt_handler import JWTHandler
from .permissions import Permission, parse_permission

logger = get_logger(__name__)

LOOPBACK_ALIASES = frozenset({"127.0.0.1", "::1", "localhost"})
BROWSER_VERSION_PATTERN = re.compile(r"(Chrome|Firefox|Safari|Edge)/(\d+)")

SESSION_ID_PREFIX = "sess_"
CSRF_TOKEN_PREFIX = "csrf_"

SESSION_BYTES_ESTIMATE = 1024
EVENT_BYTES_ESTIMATE = 512
IP_BYTES_ESTIMATE = 64


class LoginMethod(str, Enum):
    PASSWORD = "password"
    SSO = "sso"
    API = "api"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_session_id() -> str:
    return SESSION_ID_PREFIX + secrets.token_urlsafe(24)


def generate_csrf_token() -> str:
    return CSRF_TOKEN_PREFIX + secrets.token_urlsafe(32)


@dataclass(frozen=True)
class SessionUser:
    """Identity captured into a session at login"""

    user_id: str
    email: str
    name: str
    role: str
    role_id: str
    permissions: Sequence[Permission] = ()


@dataclass(frozen=True)
class SecureSession:
    user_id: str
    email: str
    name: str
    role: str
    role_id: str
    permissions: Tuple[Permission, ...]
    session_id: str
    csrf_token: str
    ip_address: str
    user_agent: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    login_method: LoginMethod = LoginMethod.PASSWORD

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "role_id": self.role_id,
            "permissions": [p.value for p in self.permissions],
            "session_id": self.session_id,
            "csrf_token": self.csrf_token,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "login_method": self.login_method.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecureSession":
        permissions = []
        for value in data.get("permissions", []):
            permission = parse_permission(value)
            if permission is None:
                logger.warning(f"Dropping unknown permission from session: {value}")
                continue
            permissions.append(permission)

        return cls(
            user_id=str(data["user_id"]),
            email=str(data["email"]),
            name=str(data["name"]),
            role=str(data["role"]),
            role_id=str(data["role_id"]),
            permissions=tuple(permissions),
            session_id=str(data["session_id"]),
            csrf_token=str(data["csrf_token"]),
            ip_address=str(data["ip_address"]),
            user_agent=str(data["user_agent"]),
            created_at=_parse_datetime(data["created_at"]),
            last_activity=_parse_datetime(data["last_activity"]),
            expires_at=_parse_datetime(data["expires_at"]),
            login_method=LoginMethod(data.get("login_method", LoginMethod.PASSWORD.value)),
        )


@dataclass
class SessionValidationResult:
    valid: bool
    session: Optional[SecureSession] = None
    reason: Optional[str] = None
    requires_reauth: bool = False
    suspicious: bool = False
    failure: Optional[SecurityEventType] = None


@dataclass(frozen=True)
class BindingPolicy:
    """How far a request may drift from the context a session was created in"""

    subnet_octets: int = 3
    allow_loopback_aliases: bool = True
    match_browser_major_version: bool = True


def ip_addresses_match(original: str, current: str, policy: BindingPolicy = BindingPolicy()) -> bool:
    if original == current:
        return True

    if policy.allow_loopback_aliases and original in LOOPBACK_ALIASES and current in LOOPBACK_ALIASES:
        return True

    if policy.subnet_octets <= 0:
        return False

    try:
        original_ip = ipaddress.ip_address(original)
        current_ip = ipaddress.ip_address(current)
    except ValueError:
        return False

    if original_ip.version != 4 or current_ip.version != 4:
        return False

    octets = min(policy.subnet_octets, 4)
    return original_ip.packed[:octets] == current_ip.packed[:octets]


def browser_signature(user_agent: str) -> str:
    """Browser family and major version, e.g. Chrome/123, or the raw string"""
    match = BROWSER_VERSION_PATTERN.search(user_agent or "")
    return match.group(0) if match else (user_agent or "")


def user_agents_match(original: str, current: str, policy: BindingPolicy = BindingPolicy()) -> bool:
    if original == current:
        return True
    if not policy.match_browser_major_version:
        return False
    return browser_signature(original) == browser_signature(current)


@dataclass(frozen=True)
class SessionSecurityConfig:
    session_lifetime: timedelta = timedelta(days=7)
    max_sessions_per_user: int = 5
    binding: BindingPolicy = field(default_factory=BindingPolicy)
    suspicious_event_threshold: int = 3
    suspicious_window: timedelta = timedelta(hours=1)
    suspicious_ip_ttl: timedelta = timedelta(hours=24)
    max_events: int = 1000
    event_retention: timedelta = timedelta(days=7)
    max_sessions_threshold: int = 10000
    max_events_threshold: int = 5000
    max_suspicious_ips_threshold: int = 1000
    aggressive_inactive: timedelta = timedelta(hours=1)
    aggressive_retention: timedelta = timedelta(hours=6)

    @classmethod
    def from_settings(cls, settings) -> "SessionSecurityConfig":
        return cls(
            session_lifetime=settings.session_lifetime,
            max_sessions_per_user=settings.max_sessions_per_user,
            binding=BindingPolicy(
                subnet_octets=settings.ip_subnet_octets,
                allow_loopback_aliases=settings.allow_loopback_aliases,
                match_browser_major_version=settings.match_browser_major_version,
            ),
            suspicious_event_threshold=settings.suspicious_event_threshold,
            suspicious_window=timedelta(minutes=settings.suspicious_window_minutes),
            suspicious_ip_ttl=timedelta(hours=settings.suspicious_ip_ttl_hours),
            max_events=settings.max_security_events,
            event_retention=timedelta(days=settings.event_retention_days),
            max_sessions_threshold=settings.max_sessions_threshold,
            max_events_threshold=settings.max_events_threshold,
            max_suspicious_ips_threshold=settings.max_suspicious_ips_threshold,
            aggressive_inactive=timedelta(minutes=settings.aggressive_inactive_minutes),
            aggressive_retention=timedelta(hours=settings.aggressive_retention_hours),
        )


class SessionSecurityManager:
    """
    Owns the session registry, the security event log and the suspicious IP
    map. All state lives in injectable stores so a shared backend can replace
    the in-process defaults.
    """

    def __init__(
        self,
        codec: JWTHandler,
        config: Optional[SessionSecurityConfig] = None,
        session_store: Optional[InMemoryStore] = None,
        suspicious_ip_store: Optional[InMemoryStore] = None,
        event_log: Optional[SecurityEventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.codec = codec
        self.config = config or SessionSecurityConfig()
        self.sessions: InMemoryStore = session_store if session_store is not None else InMemoryStore()
        self.suspicious_ips: InMemoryStore = (
            suspicious_ip_store if suspicious_ip_store is not None else InMemoryStore()
        )
        self.event_log = event_log if event_log is not None else SecurityEventLog(self.config.max_events)
        self._clock = clock or _utcnow
        self.last_cleanup: Optional[datetime] = None
        self.last_memory_check: Optional[datetime] = None

    def now(self) -> datetime:
        return self._clock()

    # Session lifecycle

    def create_session(
        self,
        user: SessionUser,
        request: RequestContext,
        login_method: LoginMethod = LoginMethod.PASSWORD,
    ) -> Tuple[SecureSession, str]:
        """
        Create and register a session bound to the request's IP and user agent
        Returns:
            (session, signed token)
        """
        client = extract_client_info(request)
        granted = set(user.permissions)
        now = self.now()

        session = SecureSession(
            user_id=user.user_id,
            email=user.email,
            name=user.name,
            role=user.role,
            role_id=user.role_id,
            permissions=tuple(p for p in Permission if p in granted),
            session_id=generate_session_id(),
            csrf_token=generate_csrf_token(),
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            created_at=now,
            last_activity=now,
            expires_at=now + self.config.session_lifetime,
            login_method=LoginMethod(login_method),
        )

        self._enforce_session_cap(session)
        self.sessions.set(session.session_id, session)
        token = self.codec.sign(session.to_dict(), session.expires_at)

        self._log_for_session(
            SecurityEventType.SESSION_CREATED,
            Severity.LOW,
            session,
            details={"login_method": session.login_method.value},
        )
        logger.info(
            f"Session created for user {user.user_id}",
            extra={"user_id": user.user_id, "session_id": session.session_id},
        )
        return session, token

    def _enforce_session_cap(self, new_session: SecureSession) -> None:
        limit = self.config.max_sessions_per_user
        if limit <= 0:
            return

        existing = sorted(self.get_user_sessions(new_session.user_id), key=lambda s: s.created_at)
        while len(existing) >= limit:
            oldest = existing.pop(0)
            self.sessions.delete(oldest.session_id)
            self._log_for_session(
                SecurityEventType.CONCURRENT_SESSION,
                Severity.MEDIUM,
                oldest,
                ip_address=new_session.ip_address,
                user_agent=new_session.user_agent,
                details={"evicted_session_id": oldest.session_id, "limit": limit},
            )

    def get_session(self, session_id: str) -> Optional[SecureSession]:
        return self.sessions.get(session_id)

    def get_user_sessions(self, user_id: str) -> List[SecureSession]:
        now = self.now()
        return [
            s for s in self.sessions.values() if s.user_id == user_id and not s.is_expired(now)
        ]

    def invalidate_session(self, session_id: str, reason: str = "User logout") -> bool:
        session = self.sessions.get(session_id)
        if session is None or not self.sessions.delete(session_id):
            return False

        self._log_for_session(
            SecurityEventType.SESSION_INVALIDATED,
            Severity.LOW,
            session,
            details={"reason": reason},
        )
        return True

    def invalidate_user_sessions(self, user_id: str, reason: str = "Security measure") -> int:
        """Log a user out everywhere, returning how many sessions were dropped"""
        count = 0
        for session in [s for s in self.sessions.values() if s.user_id == user_id]:
            if self.invalidate_session(session.session_id, reason):
                count += 1
        if count:
            logger.info(f"Invalidated {count} sessions for user {user_id}: {reason}")
        return count

    def refresh_role(self, role_id: str, role_name: str, permissions: Iterable[Permission]) -> int:
        """Apply a role edit to the live sessions holding that role"""
        granted = set(permissions)
        ordered = tuple(p for p in Permission if p in granted)

        def apply(current: Optional[SecureSession]) -> Optional[SecureSession]:
            if current is None or current.role_id != role_id:
                return current
            return replace(current, role=role_name, permissions=ordered)

        count = 0
        for session_id, session in self.sessions.items():
            if session.role_id == role_id and self.sessions.update(session_id, apply) is not None:
                count += 1
        if count:
            logger.info(f"Refreshed {count} sessions after update of role {role_id}")
        return count

    # Validation

    def validate_token(self, token: Optional[str], request: RequestContext) -> SessionValidationResult:
        """Decode a session token and validate it against the registry and request"""
        try:
            # Expiry is judged below against the registry so it is logged
            claims = self.codec.verify(token, verify_expiry=False)
            presented = SecureSession.from_dict(claims)
        except InvalidTokenError:
            return SessionValidationResult(valid=False, reason="Invalid or expired token", requires_reauth=True)
        except (KeyError, TypeError, ValueError):
            return SessionValidationResult(valid=False, reason="Malformed session payload", requires_reauth=True)

        registered = self.sessions.get(presented.session_id)
        if registered is None or registered.user_id != presented.user_id:
            return SessionValidationResult(valid=False, reason="Session not found", requires_reauth=True)

        return self._validate(registered, request, require_registered=True)

    def validate_session(self, session: SecureSession, request: RequestContext) -> SessionValidationResult:
        """Run the expiry, binding and suspicious IP checks for a decoded session"""
        return self._validate(session, request, require_registered=False)

    def _validate(
        self, session: SecureSession, request: RequestContext, require_registered: bool
    ) -> SessionValidationResult:
        client = extract_client_info(request)
        now = self.now()
        binding = self.config.binding

        if session.is_expired(now):
            self._log_for_session(
                SecurityEventType.SESSION_EXPIRED,
                Severity.LOW,
                session,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                details={"expired_at": session.expires_at.isoformat()},
            )
            self.sessions.delete(session.session_id)
            return SessionValidationResult(
                valid=False,
                reason="Session expired",
                requires_reauth=True,
                failure=SecurityEventType.SESSION_EXPIRED,
            )

        if not ip_addresses_match(session.ip_address, client.ip_address, binding):
            self._log_for_session(
                SecurityEventType.IP_MISMATCH,
                Severity.HIGH,
                session,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                details={"original_ip": session.ip_address, "current_ip": client.ip_address},
            )
            return self._violation(session, "IP address mismatch detected", SecurityEventType.IP_MISMATCH)

        if not user_agents_match(session.user_agent, client.user_agent, binding):
            self._log_for_session(
                SecurityEventType.USER_AGENT_MISMATCH,
                Severity.MEDIUM,
                session,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                details={
                    "original_user_agent": session.user_agent,
                    "current_user_agent": client.user_agent,
                },
            )
            return self._violation(
                session, "User agent mismatch detected", SecurityEventType.USER_AGENT_MISMATCH
            )

        if self.is_suspicious_ip(client.ip_address):
            self._log_for_session(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                Severity.CRITICAL,
                session,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                details={"reason": "Request from flagged IP address"},
            )
            return self._violation(
                session, "Suspicious activity detected", SecurityEventType.SUSPICIOUS_ACTIVITY
            )

        def touch(current: Optional[SecureSession]) -> Optional[SecureSession]:
            if current is None and require_registered:
                return None
            base = current or session
            return replace(base, last_activity=max(base.last_activity, now))

        updated = self.sessions.update(session.session_id, touch)
        if updated is None:
            return SessionValidationResult(valid=False, reason="Session not found", requires_reauth=True)

        self._log_for_session(
            SecurityEventType.SESSION_VALIDATED,
            Severity.LOW,
            updated,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return SessionValidationResult(valid=True, session=updated)

    def _violation(
        self, session: SecureSession, reason: str, failure: SecurityEventType
    ) -> SessionValidationResult:
        self.invalidate_session(session.session_id, reason)
        return SessionValidationResult(
            valid=False,
            reason=reason,
            requires_reauth=True,
            suspicious=True,
            failure=failure,
        )

    # Security events

    def log_security_event(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        now = self.now()
        event = self.event_log.append(
            SecurityEvent(
                event_type=event_type,
                severity=severity,
                user_id=user_id,
                session_id=session_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
                timestamp=now,
            )
        )

        if event.severity in ESCALATING_SEVERITIES and ip_address:
            self._check_suspicious_activity(ip_address, now)
        return event

    def _log_for_session(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        session: SecureSession,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        return self.log_security_event(
            event_type,
            severity,
            user_id=session.user_id,
            session_id=session.session_id,
            ip_address=ip_address or session.ip_address,
            user_agent=user_agent or session.user_agent,
            details=details,
        )

    def _check_suspicious_activity(self, ip_address: str, now: datetime) -> None:
        since = now - self.config.suspicious_window
        recent = self.event_log.count_recent(ip_address, since)
        if recent < self.config.suspicious_event_threshold:
            return

        flagged = self.suspicious_ips.update(ip_address, lambda current: current or now)
        if flagged == now:
            logger.warning(
                f"IP flagged as suspicious after {recent} high severity events",
                extra={"ip_address": ip_address},
            )

    def is_suspicious_ip(self, ip_address: str) -> bool:
        flagged_at = self.suspicious_ips.get(ip_address)
        if flagged_at is None:
            return False
        if flagged_at <= self.now() - self.config.suspicious_ip_ttl:
            self.suspicious_ips.delete(ip_address)
            return False
        return True

    def get_user_security_events(self, user_id: str, limit: int = 50) -> List[SecurityEvent]:
        return self.event_log.events(lambda e: e.user_id == user_id, limit=limit)

    def get_security_events(
        self, limit: int = 100, severity: Optional[Severity] = None
    ) -> List[SecurityEvent]:
        if severity is None:
            return self.event_log.events(limit=limit)
        return self.event_log.events(lambda e: e.severity == severity, limit=limit)

    # Cleanup

    def cleanup_expired_sessions(self) -> Dict[str, int]:
        """Periodic sweep of expired sessions, old events and stale flagged IPs"""
        now = self.now()
        expired_sessions = self.sessions.sweep(lambda _, s: s.is_expired(now))
        pruned_events = self.event_log.prune_before(now - self.config.event_retention)
        expired_ips = self.suspicious_ips.sweep(
            lambda _, flagged_at: flagged_at <= now - self.config.suspicious_ip_ttl
        )
        self.last_cleanup = now

        if expired_sessions or pruned_events or expired_ips:
            logger.info(
                f"Session cleanup: {expired_sessions} sessions, "
                f"{pruned_events} events, {expired_ips} suspicious IPs removed"
            )
        return {
            "sessions": expired_sessions,
            "events": pruned_events,
            "suspicious_ips": expired_ips,
        }

    def is_under_memory_pressure(self) -> bool:
        return (
            len(self.sessions) > self.config.max_sessions_threshold
            or len(self.event_log) > self.config.max_events_threshold
            or len(self.suspicious_ips) > self.config.max_suspicious_ips_threshold
        )

    def perform_memory_check(self) -> bool:
        """Run the aggressive sweep when any registry exceeds its threshold"""
        self.last_memory_check = self.now()
        if not self.is_under_memory_pressure():
            return False

        logger.warning(
            f"Session registry over threshold: {len(self.sessions)} sessions, "
            f"{len(self.event_log)} events, {len(self.suspicious_ips)} suspicious IPs"
        )
        self.aggressive_cleanup()
        return True

    def aggressive_cleanup(self) -> Dict[str, int]:
        now = self.now()
        inactive_cutoff = now - self.config.aggressive_inactive
        retention_cutoff = now - self.config.aggressive_retention

        evicted = self.sessions.sweep(
            lambda _, s: s.is_expired(now) or s.last_activity < inactive_cutoff
        )
        pruned_events = self.event_log.prune_before(retention_cutoff)
        dropped_ips = self.suspicious_ips.sweep(lambda _, flagged_at: flagged_at < retention_cutoff)
        self.last_cleanup = now

        logger.warning(
            f"Aggressive cleanup: {evicted} sessions, {pruned_events} events, "
            f"{dropped_ips} suspicious IPs removed"
        )
        return {"sessions": evicted, "events": pruned_events, "suspicious_ips": dropped_ips}

    def force_cleanup_all(self) -> Dict[str, int]:
        """Drop every session, event and flagged IP"""
        counts = {
            "sessions": len(self.sessions),
            "events": len(self.event_log),
            "suspicious_ips": len(self.suspicious_ips),
        }
        self.sessions.clear()
        self.event_log.clear()
        self.suspicious_ips.clear()
        self.last_cleanup = self.now()
        logger.warning(f"Forced cleanup of all session state: {counts}")
        return counts

    def get_memory_stats(self) -> Dict[str, Any]:
        sessions = len(self.sessions)
        events = len(self.event_log)
        ips = len(self.suspicious_ips)
        estimated = (
            sessions * SESSION_BYTES_ESTIMATE
            + events * EVENT_BYTES_ESTIMATE
            + ips * IP_BYTES_ESTIMATE
        )
        return {
            "active_sessions": sessions,
            "security_events": events,
            "suspicious_ips": ips,
            "estimated_memory_bytes": estimated,
            "estimated_memory_usage": f"{estimated / 1024:.2f} KB",
            "last_cleanup": self.last_cleanup.isoformat() if self.last_cleanup else None,
            "last_memory_check": (
                self.last_memory_check.isoformat() if self.last_memory_check else None
            ),
            "thresholds": {
                "sessions": self.config.max_sessions_threshold,
                "events": self.config.max_events_threshold,
                "suspicious_ips": self.config.max_suspicious_ips_threshold,
            },
        }
