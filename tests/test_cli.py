"""Tests for alto.cli: click commands via CliRunner."""

import json

import pytest
from click.testing import CliRunner

from alto.cli import cli


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ALTO_PROVIDER", "ALTO_ENDPOINT", "ALTO_MODEL", "ALTO_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


class TestParseCommand:
    def test_tagged_reply(self, runner):
        result = runner.invoke(cli, ["parse", "Scanning now.\\nACTION:scan_junk"])
        assert result.exit_code == 0
        assert "scan_junk" in result.output
        assert "(tag)" in result.output

    def test_inferred_reply(self, runner):
        result = runner.invoke(cli, ["parse", "I found some junk files on your disk."])
        assert result.exit_code == 0
        assert "inferred" in result.output

    def test_follow_up_suppresses_fallback(self, runner):
        result = runner.invoke(cli, ["parse", "--follow-up", "The junk is gone."])
        assert result.exit_code == 0
        assert "none" in result.output

    def test_schedule_line(self, runner):
        result = runner.invoke(cli, ["parse", "Okay.\\nSCHEDULE:0 9 * * 1 scan_junk"])
        assert "0 9 * * 1 -> scan_junk" in result.output


class TestConfigCommand:
    def test_set_and_show(self, runner, config_path):
        result = runner.invoke(cli, ["--config-file", str(config_path), "config", "provider.kind=ollama"])
        assert result.exit_code == 0
        assert "Set provider.kind = ollama" in result.output
        assert json.loads(config_path.read_text())["provider"]["kind"] == "network_local"

        result = runner.invoke(cli, ["--config-file", str(config_path), "config"])
        assert result.exit_code == 0
        assert "network_local" in result.output

    def test_credential_masked(self, runner, config_path):
        runner.invoke(cli, ["--config-file", str(config_path), "config", "provider.credential=sk-secret"])
        result = runner.invoke(cli, ["--config-file", str(config_path), "config"])
        assert "sk-secret" not in result.output
        assert "***" in result.output

    def test_numeric_alert_setting(self, runner, config_path):
        runner.invoke(cli, ["--config-file", str(config_path), "config", "alerts.cooldown_seconds=600"])
        assert json.loads(config_path.read_text())["alerts"]["cooldown_seconds"] == 600.0

    def test_unknown_key(self, runner, config_path):
        result = runner.invoke(cli, ["--config-file", str(config_path), "config", "colour=blue"])
        assert "Unknown config key" in result.output
        assert not config_path.exists()

    def test_unknown_provider_kind(self, runner, config_path):
        result = runner.invoke(cli, ["--config-file", str(config_path), "config", "provider.kind=toaster"])
        assert "Unknown provider kind" in result.output
        assert not config_path.exists()

    def test_bad_number(self, runner, config_path):
        result = runner.invoke(cli, ["--config-file", str(config_path), "config", "alerts.cooldown_seconds=soon"])
        assert "Invalid value" in result.output


class TestTestCommand:
    def test_incomplete_cloud_config_reported(self, runner, config_path):
        runner.invoke(cli, ["--config-file", str(config_path), "config", "provider.kind=cloud"])
        result = runner.invoke(cli, ["--config-file", str(config_path), "test"])
        assert result.exit_code == 0
        assert "Connection failed" in result.output
