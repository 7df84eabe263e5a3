"""
Tests for settings, logging and input validation
"""
import json
import logging

import pytest
from pydantic import ValidationError as SettingsValidationError

from kudos.auth.session import SessionSecurityConfig
from kudos.core.config import Settings
from kudos.core.logging import AuditLogAdapter, StructuredFormatter, setup_logging
from kudos.core.validators import InputValidator

from conftest import TEST_SECRET


class TestSettings:
    """Test settings validation"""

    def test_defaults(self):
        settings = Settings(_env_file=None, jwt_secret=TEST_SECRET)

        assert settings.session_cookie_name == "session"
        assert settings.session_lifetime.days == 7
        assert settings.rate_limit_max_requests == 5
        assert settings.rate_limit_window_ms == 60000
        assert settings.get_jwt_config() == {"secret": TEST_SECRET, "algorithm": "HS256"}

    def test_short_secret_rejected(self):
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, jwt_secret="too-short")

    def test_placeholder_secret_rejected(self):
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, jwt_secret="your-secret-key-please-replace-it-now")

    def test_environment_validated(self):
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, jwt_secret=TEST_SECRET, environment="staging")
        assert Settings(_env_file=None, jwt_secret=TEST_SECRET, environment="TEST").is_test

    def test_cleanup_probability_bounds(self):
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, jwt_secret=TEST_SECRET, rate_limit_cleanup_probability=1.5)

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
        monkeypatch.setenv("IP_SUBNET_OCTETS", "4")
        monkeypatch.setenv("MAX_SESSIONS_PER_USER", "2")

        settings = Settings(_env_file=None)
        config = SessionSecurityConfig.from_settings(settings)

        assert config.binding.subnet_octets == 4
        assert config.max_sessions_per_user == 2


class TestLogging:
    """Test structured logging output"""

    def test_structured_formatter_includes_context(self):
        record = logging.LogRecord("kudos", logging.WARNING, __file__, 1, "denied", None, None)
        record.user_id = "user_1"
        record.ip_address = "10.0.0.1"

        output = json.loads(StructuredFormatter().format(record))

        assert output["message"] == "denied"
        assert output["level"] == "WARNING"
        assert output["user_id"] == "user_1"
        assert output["ip_address"] == "10.0.0.1"

    def test_adapter_stamps_context(self):
        adapter = AuditLogAdapter(logging.getLogger("kudos.test"), {"request_id": "req-1"})

        _, kwargs = adapter.process("message", {"extra": {"user_id": "user_1"}})

        assert kwargs["extra"] == {"request_id": "req-1", "user_id": "user_1"}

    def test_setup_logging_is_idempotent(self, tmp_path):
        log_file = tmp_path / "logs" / "kudos.log"

        setup_logging("DEBUG", str(log_file), structured=True)
        setup_logging("DEBUG", str(log_file), structured=True)

        tagged = [h for h in logging.getLogger().handlers if getattr(h, "_kudos_handler", False)]
        assert len(tagged) == 2
        assert log_file.parent.exists()
        setup_logging("INFO", None, structured=False)


class TestInputValidator:
    @pytest.mark.parametrize("email", ["a@b.co", "first.last@kudos.test"])
    def test_valid_emails(self, email):
        assert InputValidator.is_valid_email(email)

    @pytest.mark.parametrize("email", ["", "plain", "a@b", "a..b@c.com", "a b@c.com", None])
    def test_invalid_emails(self, email):
        assert not InputValidator.is_valid_email(email)

    def test_sanitize_string(self):
        assert InputValidator.sanitize_string("  <b>Ana</b> <script>x</script> ") == "Ana x"
        assert InputValidator.sanitize_string(None) == ""
        assert len(InputValidator.sanitize_string("a" * 2000)) == 1000

    def test_required_fields(self):
        result = InputValidator.validate_required_fields({"email": "a@b.co"}, ["email", "password"])

        assert not result.is_valid
        assert result.errors == ["password is required"]
