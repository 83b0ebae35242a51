"""Tests for the mailbridge command line."""

import pytest
from click.testing import CliRunner

from mailbridge.cli import main as cli_main
from mailbridge.core.config import MailBridgeConfig
from mailbridge.dedupe import IdempotencyStore


@pytest.fixture
def config(tmp_path, monkeypatch):
    cfg = MailBridgeConfig(
        _env_file=None,
        credentials_dir=tmp_path / "creds",
        workspaces_dir=tmp_path / "groups",
        database_path=tmp_path / "mailbridge.db",
    )
    monkeypatch.setattr(cli_main, "get_config", lambda: cfg)
    return cfg


class TestCli:

    def test_sender_key(self, config):
        result = CliRunner().invoke(cli_main.cli, ["--plain-logs", "sender-key", "Alice@Example.com"])

        assert result.exit_code == 0
        assert result.output.splitlines() == [
            "alice-at-example-com",
            "email-alice-at-example-com",
        ]

    def test_status_lists_unanswered(self, config):
        store = IdempotencyStore(config.resolved_database_path)
        store.mark_processed("m1", "t1", "alice@example.com", "Question")
        store.mark_processed("m2", "t2", "bob@example.com", "Other")
        store.mark_responded("m2")

        result = CliRunner().invoke(cli_main.cli, ["--plain-logs", "status"])

        assert result.exit_code == 0
        assert "Processed: 2" in result.output
        assert "m1" in result.output

    def test_run_requires_agent_command(self, config):
        result = CliRunner().invoke(cli_main.cli, ["--plain-logs", "run"])

        assert result.exit_code == 1
        assert "MAILBRIDGE_AGENT_COMMAND" in result.output

    def test_check_without_credentials_fails(self, config):
        result = CliRunner().invoke(cli_main.cli, ["--plain-logs", "check"])

        assert result.exit_code == 1
        assert "missing or invalid" in result.output
