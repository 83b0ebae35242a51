"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from mailbridge.core.config import MailBridgeConfig, get_config


class TestMailBridgeConfig:

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MAILBRIDGE_HOME", str(tmp_path))
        config = MailBridgeConfig(_env_file=None)

        assert config.email_label == "agent"
        assert config.poll_interval_seconds == 60
        assert config.agent_timeout_seconds == 600.0
        assert config.credentials_dir == Path.home() / ".gmail-mcp"
        assert config.resolved_database_path.parent.parent == tmp_path / "store"

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MAILBRIDGE_EMAIL_LABEL", "support")
        monkeypatch.setenv("MAILBRIDGE_POLL_INTERVAL_SECONDS", "120")
        monkeypatch.setenv("MAILBRIDGE_AGENT_COMMAND", "my-agent --workspace '.' -v")
        monkeypatch.setenv("MAILBRIDGE_DATABASE_PATH", str(tmp_path / "x.db"))

        config = MailBridgeConfig(_env_file=None)

        assert config.email_label == "support"
        assert config.poll_interval_seconds == 120
        assert config.agent_argv == ["my-agent", "--workspace", ".", "-v"]
        assert config.resolved_database_path == tmp_path / "x.db"

    def test_log_level_normalized(self):
        assert MailBridgeConfig(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            MailBridgeConfig(_env_file=None, log_level="LOUD")

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            MailBridgeConfig(_env_file=None, agent_timeout_seconds=0)

    def test_get_config_is_cached(self):
        assert get_config(force_reload=True) is get_config()
