"""Tests for src.config — settings loading."""

import pytest

from src.config import Settings, _load_settings


class TestLoadSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DB_TIMEOUT_SECONDS", raising=False)
        monkeypatch.delenv("SWEEP_INTERVAL_SECONDS", raising=False)
        loaded = _load_settings()
        assert loaded.DB_TIMEOUT_SECONDS == 2.0
        assert loaded.SWEEP_INTERVAL_SECONDS == 60
        assert loaded.ALLOWED_USER_IDS == [12345]

    def test_missing_token_exits(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
        with pytest.raises(SystemExit):
            _load_settings()

    def test_user_ids_from_comma_list(self):
        settings = Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS="1, 2,,3")
        assert settings.ALLOWED_USER_IDS == [1, 2, 3]

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            Settings(TELEGRAM_BOT_TOKEN="t", SWEEP_INTERVAL_SECONDS="0")
