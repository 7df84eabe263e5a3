"""
Tests for the session token codec
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from kudos.auth.jwt_handler import JWTHandler
from kudos.core.exceptions import InvalidTokenError

from conftest import TEST_SECRET


class TestJWTHandler:
    """Test signing and verification"""

    def test_sign_and_verify(self):
        """A signed payload verifies back without the timing claims"""
        handler = JWTHandler(TEST_SECRET)
        expires = datetime.now(timezone.utc) + timedelta(hours=1)

        token = handler.sign({"session_id": "sess_1", "user_id": "user_1"}, expires)
        claims = handler.verify(token)

        assert claims == {"session_id": "sess_1", "user_id": "user_1"}

    def test_expiry_is_rounded_up(self):
        """exp is the ceiling of the expiry timestamp"""
        handler = JWTHandler(TEST_SECRET)
        expires = datetime.now(timezone.utc).replace(microsecond=500000) + timedelta(hours=1)

        token = handler.sign({"a": 1}, expires)
        raw = jwt.decode(token, TEST_SECRET, algorithms=["HS256"])

        assert raw["exp"] == int(expires.timestamp()) + 1

    def test_expired_token_rejected(self):
        handler = JWTHandler(TEST_SECRET)
        token = handler.sign({"a": 1}, datetime.now(timezone.utc) - timedelta(seconds=5))

        with pytest.raises(InvalidTokenError):
            handler.verify(token)

    def test_elapsed_expiry_accepted_on_request(self):
        handler = JWTHandler(TEST_SECRET)
        token = handler.sign({"a": 1}, datetime.now(timezone.utc) - timedelta(days=1))

        assert handler.verify(token, verify_expiry=False) == {"a": 1}

    def test_skipping_expiry_still_checks_signature(self):
        token = JWTHandler("another-secret-value-that-is-long-enough").sign(
            {"a": 1}, datetime.now(timezone.utc) - timedelta(days=1)
        )

        with pytest.raises(InvalidTokenError):
            JWTHandler(TEST_SECRET).verify(token, verify_expiry=False)

    def test_wrong_secret_rejected(self):
        """Tokens signed with another key fail like any other bad token"""
        token = JWTHandler("another-secret-value-that-is-long-enough").sign(
            {"a": 1}, datetime.now(timezone.utc) + timedelta(hours=1)
        )

        with pytest.raises(InvalidTokenError) as exc_info:
            JWTHandler(TEST_SECRET).verify(token)
        assert exc_info.value.message == "Invalid token"

    @pytest.mark.parametrize("token", ["", None, "not-a-jwt", "a.b.c"])
    def test_malformed_tokens_rejected(self, token):
        with pytest.raises(InvalidTokenError):
            JWTHandler(TEST_SECRET).verify(token)

    def test_tampered_payload_rejected(self):
        handler = JWTHandler(TEST_SECRET)
        token = handler.sign({"role": "user"}, datetime.now(timezone.utc) + timedelta(hours=1))
        forged = jwt.encode(
            {"role": "admin", "exp": jwt.decode(token, options={"verify_signature": False})["exp"]},
            "forged-secret-forged-secret-forged-secret",
            algorithm="HS256",
        )
        header, _, signature = token.split(".")
        mixed = ".".join([header, forged.split(".")[1], signature])

        with pytest.raises(InvalidTokenError):
            handler.verify(mixed)

    def test_token_without_exp_rejected(self):
        token = jwt.encode({"a": 1}, TEST_SECRET, algorithm="HS256")

        with pytest.raises(InvalidTokenError):
            JWTHandler(TEST_SECRET).verify(token)

    def test_reserved_claims_refused(self):
        handler = JWTHandler(TEST_SECRET)

        with pytest.raises(ValueError):
            handler.sign({"exp": 1}, datetime.now(timezone.utc) + timedelta(hours=1))

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            JWTHandler("")
