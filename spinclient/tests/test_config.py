"""Tests for spinclient.core.config: settings loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from spinclient.core.config import Settings, get_settings


class TestSettings:
    """Verify settings defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SPIN_RPC_URL", raising=False)
        s = Settings(_env_file=None)
        assert s.app_env == "development"
        assert s.rpc_url == "http://localhost:8545"
        assert s.signature_duration_days == 365
        assert s.signature_redis_url == ""
        assert s.signature_key_prefix == "fhevm-sig"
        assert s.message_history_size == 50

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SPIN_RPC_URL", "https://sepolia.example/rpc")
        monkeypatch.setenv("SPIN_SIGNATURE_DURATION_DAYS", "7")
        monkeypatch.setenv("SPIN_APP_ENV", "production")
        s = Settings(_env_file=None)
        assert s.rpc_url == "https://sepolia.example/rpc"
        assert s.signature_duration_days == 7
        assert s.app_env == "production"

    def test_invalid_duration(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, signature_duration_days=0)

    def test_invalid_env(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, app_env="qa")


class TestGetSettings:
    def test_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
