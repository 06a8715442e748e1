"""
Test suite for application settings.

Run tests:
    pytest tests/core/test_config.py -v
"""

import pytest
from pydantic import ValidationError

from careauth.core.config import DEV_OTP_ENCRYPTION_KEY, Settings


def make_settings(**overrides) -> Settings:
    return Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", **overrides)


class TestSettings:

    def test_defaults(self):
        settings = make_settings()
        assert settings.OTP_LENGTH == 6
        assert settings.OTP_MAX_ATTEMPTS == 3
        assert settings.OTP_RESEND_COOLDOWN_SECONDS == 0

    def test_expiry_per_purpose_with_fallback(self):
        settings = make_settings(
            OTP_EXPIRY_MINUTES=5,
            OTP_EXPIRY_MINUTES_BY_PURPOSE={"account_verification": 10},
        )
        assert settings.otp_expiry_minutes("account_verification") == 10
        assert settings.otp_expiry_minutes("password_reset") == 5

    def test_max_attempts_per_purpose_with_fallback(self):
        settings = make_settings(OTP_MAX_ATTEMPTS_BY_PURPOSE={"password_reset": 5})
        assert settings.otp_max_attempts("password_reset") == 5
        assert settings.otp_max_attempts("email_update") == 3

    def test_credential_ttl_per_guard(self):
        settings = make_settings()
        assert settings.credential_ttl_minutes("admin") == 60 * 8
        assert settings.credential_ttl_minutes("client") == 60 * 24 * 7

    def test_production_rejects_development_key(self):
        with pytest.raises(ValidationError, match="development key"):
            make_settings(ENVIRONMENT="production")

    def test_production_rejects_empty_keys(self):
        with pytest.raises(ValidationError):
            make_settings(ENVIRONMENT="production", OTP_ENCRYPTION_KEYS=[])

    def test_production_accepts_real_key(self):
        from cryptography.fernet import Fernet

        key = Fernet.generate_key().decode()
        settings = make_settings(ENVIRONMENT="production", OTP_ENCRYPTION_KEYS=[key])
        assert settings.OTP_ENCRYPTION_KEYS == [key]
        assert DEV_OTP_ENCRYPTION_KEY not in settings.OTP_ENCRYPTION_KEYS
