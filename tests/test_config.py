"""
tests/test_config.py -- Settings validation and environment loading.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings


class TestSettings:
    def test_short_api_key_rejected(self):
        with pytest.raises(ValidationError):
            Settings(api_key="too-short")

    def test_negative_reminder_offset_rejected(self):
        with pytest.raises(ValidationError):
            Settings(reminder_days=[7, -1])

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "mail.hospital.local")
        monkeypatch.setenv("REMINDER_DAYS", "[14, 2]")
        monkeypatch.setenv("LIFECYCLE_MIN_AGE_YEARS", "8")

        settings = Settings()

        assert settings.smtp_host == "mail.hospital.local"
        assert settings.reminder_days == [14, 2]
        assert settings.lifecycle_thresholds().min_age_years == 8.0
