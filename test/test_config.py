"""
Tests for application settings.
"""

import pytest
from pydantic import ValidationError

from callengine.config import Settings, get_settings


class TestSettings:
    def test_declared_defaults(self) -> None:
        # Environment variables may override runtime values; check the field defaults.
        fields = Settings.model_fields
        assert fields["sla_threshold_seconds"].default == 20
        assert fields["quality_review_min_recording_seconds"].default == 30
        assert fields["missed_call_classifier"].default == "queue_config"
        assert fields["phone_match_digits"].default == 9
        assert fields["telephony_ingest_secret"].default == ""

    def test_ingest_enabled_follows_secret(self) -> None:
        assert Settings(telephony_ingest_secret="").ingest_enabled is False
        assert Settings(telephony_ingest_secret="s3cret").ingest_enabled is True

    def test_log_level_is_uppercased(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_cors_origins_list(self) -> None:
        settings = Settings(cors_origins="http://a.example, http://b.example,,")
        assert settings.cors_origins_list == ["http://a.example", "http://b.example"]

    def test_unknown_classifier_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(missed_call_classifier="coin_flip")

    def test_sla_threshold_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Settings(sla_threshold_seconds=0)

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SLA_THRESHOLD_SECONDS", "45")
        monkeypatch.setenv("MISSED_CALL_CLASSIFIER", "worktime_window")

        settings = get_settings()

        assert settings.sla_threshold_seconds == 45
        assert settings.missed_call_classifier == "worktime_window"
