"""
CSRF protection bound to the session

Each session carries a single CSRF token for its lifetime. State-changing
requests must echo it back in the X-CSRF-Token header or as
"Authorization: CSRF <token>".
"""
import secrets
from dataclasses import dataclass
from typing import MutableMapping, Optional

from ..core.logging import get_logger
from ..security.audit import SecurityEventType, Severity
from .context import RequestContext, extract_client_info
from .session import SecureSession, SessionSecurityManager

logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"
AUTHORIZATION_PREFIX = "CSRF "
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

MISSING_TOKEN = "CSRF token required for this request"
INVALID_TOKEN = "Invalid CSRF token"


@dataclass
class CSRFValidationResult:
    valid: bool
    reason: Optional[str] = None


def requires_csrf(method: str) -> bool:
    return method.upper() not in SAFE_METHODS


def extract_csrf_token(request: RequestContext) -> Optional[str]:
    token = request.header(CSRF_HEADER)
    if token:
        return token

    authorization = request.header("authorization")
    if authorization and authorization.startswith(AUTHORIZATION_PREFIX):
        return authorization[len(AUTHORIZATION_PREFIX):]
    return None


def _truncate(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return token[:8] + "..."


class CSRFGuard:
    """Validates CSRF tokens and reports failures as security events"""

    def __init__(self, sessions: SessionSecurityManager):
        self.sessions = sessions

    def validate(self, request: RequestContext, session: SecureSession) -> CSRFValidationResult:
        if not requires_csrf(request.method):
            return CSRFValidationResult(valid=True)

        presented = extract_csrf_token(request)
        if not presented:
            self._report(request, session, presented, MISSING_TOKEN)
            return CSRFValidationResult(valid=False, reason=MISSING_TOKEN)

        if not secrets.compare_digest(presented.encode(), session.csrf_token.encode()):
            self._report(request, session, presented, INVALID_TOKEN)
            return CSRFValidationResult(valid=False, reason=INVALID_TOKEN)

        return CSRFValidationResult(valid=True)

    def _report(
        self,
        request: RequestContext,
        session: SecureSession,
        presented: Optional[str],
        reason: str,
    ) -> None:
        client = extract_client_info(request)
        self.sessions.log_security_event(
            SecurityEventType.CSRF_TOKEN_MISMATCH,
            Severity.HIGH,
            user_id=session.user_id,
            session_id=session.session_id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details={
                "reason": reason,
                "method": request.method,
                "path": request.path,
                "expected": _truncate(session.csrf_token),
                "received": _truncate(presented),
            },
        )
        logger.warning(
            f"CSRF validation failed for {request.method} {request.path}: {reason}",
            extra={"user_id": session.user_id, "session_id": session.session_id},
        )

    @staticmethod
    def add_token_to_response(headers: MutableMapping[str, str], token: str) -> None:
        headers[CSRF_HEADER] = token
