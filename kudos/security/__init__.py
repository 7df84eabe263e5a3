from .audit import SecurityEvent, SecurityEventLog, SecurityEventType, Severity

__all__ = [
    "SecurityEvent",
    "SecurityEventLog",
    "SecurityEventType",
    "Severity",
]
