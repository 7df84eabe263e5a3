"""
Session token codec

Signs a session payload into a compact HS256 JWT and verifies it again.
Every verification failure (malformed token, bad signature, expiry in the
past) is reported as the same InvalidTokenError so callers cannot be used
as a decoding oracle.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt

from ..core.exceptions import InvalidTokenError
from ..core.logging import get_logger

logger = get_logger(__name__)

RESERVED_CLAIMS = ("exp", "iat")


class JWTHandler:
    """Signs and verifies session tokens with a shared secret"""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("A signing secret is required")
        self.secret = secret
        self.algorithm = algorithm

    def sign(self, payload: Dict[str, Any], expires_at: datetime) -> str:
        """
        Sign a payload
        Args:
            payload: JSON-serialisable claims; must not use exp or iat
            expires_at: Absolute expiry, timezone aware
        Returns:
            Encoded token string
        """
        clashing = [claim for claim in RESERVED_CLAIMS if claim in payload]
        if clashing:
            raise ValueError(f"Payload uses reserved claims: {', '.join(clashing)}")

        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        claims = dict(payload)
        claims["iat"] = int(datetime.now(timezone.utc).timestamp())
        claims["exp"] = math.ceil(expires_at.timestamp())
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str], verify_expiry: bool = True) -> Dict[str, Any]:
        """
        Verify a token and return its payload
        Args:
            token: Encoded token
            verify_expiry: When False the signature is still checked but an
                elapsed exp is accepted, leaving expiry to the caller
        Raises:
            InvalidTokenError: for any malformed, tampered or expired token
        """
        if not token or not isinstance(token, str):
            raise InvalidTokenError()

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp"], "verify_exp": verify_expiry},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Token verification failed: {type(e).__name__}")
            raise InvalidTokenError() from None

        for claim in RESERVED_CLAIMS:
            claims.pop(claim, None)
        return claims
