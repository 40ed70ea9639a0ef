import pytest
from pydantic import ValidationError

from app.configs.settings import Settings


def test_code_echo_is_refused_in_production():
    with pytest.raises(ValidationError):
        Settings(ENVIRONMENT="production", OTP_ECHO_CODE=True)


def test_code_echo_allowed_outside_production():
    config = Settings(ENVIRONMENT="Development", OTP_ECHO_CODE=True)
    assert config.ENVIRONMENT == "development"
    assert config.otp_echo_enabled is True


def test_otp_defaults():
    config = Settings()
    assert config.OTP_EXPIRE_MINUTES == 10
    assert config.OTP_LENGTH == 6
    assert config.OTP_MAX_ATTEMPTS == 5
    assert config.otp_echo_enabled is False
