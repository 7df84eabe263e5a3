"""
Security event log

Append-only, bounded record of session and authorization events. Events are
mirrored to the standard logging pipeline with their severity mapped to a
log level.
"""
import hashlib
import json
import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class SecurityEventType(str, Enum):
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_VALIDATED = "SESSION_VALIDATED"
    SESSION_INVALIDATED = "SESSION_INVALIDATED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    IP_MISMATCH = "IP_MISMATCH"
    USER_AGENT_MISMATCH = "USER_AGENT_MISMATCH"
    CSRF_TOKEN_MISMATCH = "CSRF_TOKEN_MISMATCH"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    CONCURRENT_SESSION = "CONCURRENT_SESSION"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ESCALATING_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})

LEVEL_MAP = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


class SecurityEvent:
    def __init__(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ):
        self.id = f"evt_{uuid.uuid4().hex}"
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self.event_type = SecurityEventType(event_type)
        self.severity = Severity(severity)
        self.user_id = user_id
        self.session_id = session_id
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.details = details or {}
        self.hash = self._calculate_hash()

    def _calculate_hash(self) -> str:
        data = json.dumps(
            {
                "id": self.id,
                "timestamp": self.timestamp.isoformat(),
                "type": self.event_type.value,
                "user_id": self.user_id,
                "session_id": self.session_id,
                "ip_address": self.ip_address,
                "severity": self.severity.value,
                "details": self.details,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(data.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.event_type.value,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "details": self.details,
            "hash": self.hash,
        }

    def __repr__(self) -> str:
        return f"<SecurityEvent {self.event_type.value} {self.severity.value} ip={self.ip_address}>"


class SecurityEventLog:
    """Bounded in-memory event log, safe for concurrent writers"""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self._events: Deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.RLock()

    def append(self, event: SecurityEvent) -> SecurityEvent:
        with self._lock:
            self._events.append(event)

        logger.log(
            LEVEL_MAP[event.severity],
            f"[{event.event_type.value}] user={event.user_id} ip={event.ip_address}",
            extra={
                "event_type": event.event_type.value,
                "severity": event.severity.value,
                "user_id": event.user_id,
                "session_id": event.session_id,
                "ip_address": event.ip_address,
            },
        )
        return event

    def events(
        self,
        predicate: Optional[Callable[[SecurityEvent], bool]] = None,
        limit: Optional[int] = None,
    ) -> List[SecurityEvent]:
        """Matching events, newest first"""
        with self._lock:
            snapshot = list(self._events)
        matched = [e for e in reversed(snapshot) if predicate is None or predicate(e)]
        if limit is not None:
            matched = matched[:limit]
        return matched

    def count_recent(
        self,
        ip_address: str,
        since: datetime,
        severities: Iterable[Severity] = ESCALATING_SEVERITIES,
    ) -> int:
        wanted = frozenset(severities)
        with self._lock:
            return sum(
                1
                for e in self._events
                if e.ip_address == ip_address
                and e.timestamp > since
                and e.severity in wanted
            )

    def prune_before(self, cutoff: datetime) -> int:
        """Drop events older than cutoff, returning how many were removed"""
        with self._lock:
            kept = [e for e in self._events if e.timestamp > cutoff]
            removed = len(self._events) - len(kept)
            self._events = deque(kept, maxlen=self.max_events)
            return removed

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
