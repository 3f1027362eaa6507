"""Tests for centralized configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError


class TestSandboxSettings:
    """Test sandbox configuration settings."""

    def test_sandbox_default_values(self):
        """Test sandbox settings have sensible defaults."""
        from script_runner.config import SandboxSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = SandboxSettings()
            assert settings.enabled is True
            assert settings.timeout_ms == 300
            assert settings.max_heap_bytes == 16 * 1024 * 1024
            assert settings.heap_headroom == 2.0
            assert settings.prefer_heap_verdict is True
            assert settings.max_script_length == 100_000
            assert settings.warmup is True

    def test_sandbox_from_environment(self):
        """Test sandbox settings can be loaded from environment."""
        from script_runner.config import SandboxSettings

        env = {
            "SANDBOX_ENABLED": "no",
            "SANDBOX_TIMEOUT_MS": "1000",
            "SANDBOX_MAX_HEAP_BYTES": "4194304",
            "SANDBOX_PREFER_HEAP_VERDICT": "false",
            "SANDBOX_POLL_INTERVAL_MS": "2.5",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = SandboxSettings()
            assert settings.enabled is False
            assert settings.timeout_ms == 1000
            assert settings.max_heap_bytes == 4 * 1024 * 1024
            assert settings.prefer_heap_verdict is False
            assert settings.poll_interval_ms == 2.5

    def test_sandbox_rejects_zero_timeout(self):
        """Test a zero time budget is refused."""
        from script_runner.config import SandboxSettings

        with patch.dict(os.environ, {"SANDBOX_TIMEOUT_MS": "0"}, clear=True):
            with pytest.raises(ValidationError):
                SandboxSettings()

    def test_sandbox_rejects_headroom_below_one(self):
        """Test the hard heap limit cannot sit below the ceiling."""
        from script_runner.config import SandboxSettings

        with patch.dict(os.environ, {"SANDBOX_HEAP_HEADROOM": "0.5"}, clear=True):
            with pytest.raises(ValidationError):
                SandboxSettings()


class TestServerSettings:
    """Test server configuration settings."""

    def test_server_defaults(self):
        """Test server settings defaults."""
        from script_runner.config import ServerSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = ServerSettings()
            assert settings.host == "0.0.0.0"
            assert settings.port == 7690
            assert settings.workers == 1

    def test_server_from_environment(self):
        """Test server settings from environment."""
        from script_runner.config import ServerSettings

        with patch.dict(os.environ, {"SERVER_PORT": "9000"}, clear=True):
            assert ServerSettings().port == 9000


class TestCorsSettings:
    """Test CORS configuration settings."""

    def test_cors_wildcard_disallows_credentials(self):
        """Test wildcard origins never allow credentials."""
        from script_runner.config import CorsSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = CorsSettings()
            assert settings.origins == ["*"]
            assert settings.allow_credentials is False

    def test_cors_explicit_origins(self):
        """Test comma-separated origins are split and trimmed."""
        from script_runner.config import CorsSettings

        env = {"CORS_ORIGINS": "https://a.example, https://b.example"}
        with patch.dict(os.environ, env, clear=True):
            settings = CorsSettings()
            assert settings.origins == ["https://a.example", "https://b.example"]
            assert settings.allow_credentials is True


class TestDebugSettings:
    """Test debug flags configuration."""

    def test_debug_defaults(self):
        """Test debug flags default to off."""
        from script_runner.config import DebugSettings

        with patch.dict(os.environ, {}, clear=True):
            settings = DebugSettings()
            assert settings.request is False
            assert settings.sandbox is False
            assert settings.log_level == "INFO"

    def test_debug_flags_from_environment(self):
        """Test debug flags are read from environment."""
        from script_runner.config import DebugSettings

        env = {"REQUEST_DEBUG": "1", "SANDBOX_DEBUG": "true", "LOG_LEVEL": "DEBUG"}
        with patch.dict(os.environ, env, clear=True):
            settings = DebugSettings()
            assert settings.request is True
            assert settings.sandbox is True
            assert settings.log_level == "DEBUG"


class TestGetSettings:
    """Test the cached settings accessor."""

    def test_get_settings_is_cached(self):
        """Test get_settings returns the same instance."""
        from script_runner.config import get_settings

        assert get_settings() is get_settings()

    def test_clear_settings_cache(self):
        """Test clearing the cache rereads the environment."""
        from script_runner.config import clear_settings_cache, get_settings

        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
