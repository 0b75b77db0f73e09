"""
Test suite for the promoter CLI.
"""

import pytest
import yaml
from click.testing import CliRunner
from rich.console import Console

from conftest import ENVIRONMENTS
from deploy_promoter.cli import cli

FAST_STAGE = {"timeout_seconds": 1.0, "max_attempts": 1, "retry_backoff_seconds": 0}


@pytest.fixture
def runner():
    """CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "promoter.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "environments": ENVIRONMENTS,
                "stages": {
                    "build": FAST_STAGE,
                    "migrate": FAST_STAGE,
                    "deploy": FAST_STAGE,
                    "rollback": FAST_STAGE,
                },
                "health": {
                    "poll_interval_seconds": 0.01,
                    "max_wait_seconds": 0.2,
                    "probe_timeout_seconds": 0.05,
                },
            }
        )
    )
    return path


@pytest.fixture
def invoke(runner, config_file, tmp_path, collaborators, monkeypatch, restore_logging):
    """Invoke the CLI with fake collaborators and a shared state file."""
    monkeypatch.setattr("deploy_promoter.cli.create_collaborators", lambda config: collaborators)
    monkeypatch.setattr("deploy_promoter.cli.console", Console(width=200))
    state_file = tmp_path / "state.json"

    def _invoke(*args):
        return runner.invoke(
            cli,
            ["--config", str(config_file), "--state-file", str(state_file), *args],
            obj={},
        )

    return _invoke


@pytest.mark.unit
class TestPromoterCLI:
    """Test CLI commands."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_environments(self, invoke):
        result = invoke("environments")

        assert result.exit_code == 0
        for name in ("dev", "staging", "production"):
            assert name in result.output
        assert "http://prod.internal/health" in result.output

    def test_missing_config(self, runner, tmp_path, restore_logging):
        result = runner.invoke(
            cli, ["--config", str(tmp_path / "absent.yaml"), "environments"], obj={}
        )

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_log_level(self, runner, config_file, restore_logging):
        result = runner.invoke(
            cli, ["--config", str(config_file), "--log-level", "LOUD", "environments"], obj={}
        )

        assert result.exit_code == 2
        assert "Invalid log level" in result.output

    def test_release_and_promote(self, invoke, collaborators):
        result = invoke("release", "dev", "a", "--branch", "main")
        assert result.exit_code == 0, result.output
        assert "healthy" in result.output

        result = invoke("promote", "dev", "staging", "a")
        assert result.exit_code == 0, result.output

        assert collaborators.deployer.deployed == [
            ("artifact-a", "ubuntu@dev.internal"),
            ("artifact-a", "ubuntu@staging.internal"),
        ]

        result = invoke("status")
        assert result.exit_code == 0
        assert result.output.count("healthy") == 2

    def test_promote_skipping_rank_fails(self, invoke, collaborators):
        assert invoke("release", "dev", "a").exit_code == 0

        result = invoke("promote", "dev", "production", "a")

        assert result.exit_code == 1
        assert "InvalidPromotion" in result.output
        assert len(collaborators.deployer.deployed) == 1

    def test_trigger(self, invoke):
        assert invoke("trigger", "dev", "a").exit_code == 0

        result = invoke("trigger", "staging", "a")

        assert result.exit_code == 0, result.output
        assert "staging" in result.output

    def test_failed_release_exits_nonzero(self, invoke, collaborators):
        assert invoke("release", "dev", "a").exit_code == 0
        collaborators.deployer.failing_artifacts.add("artifact-b")

        result = invoke("release", "dev", "b")

        assert result.exit_code == 1
        assert "rolled_back" in result.output
        assert "pm2 reload failed" in result.output

    def test_status_of_single_environment(self, invoke):
        assert invoke("release", "dev", "a").exit_code == 0

        result = invoke("status", "dev")

        assert result.exit_code == 0
        assert "dev" in result.output
        assert "staging" not in result.output

    def test_resume_and_acknowledge(self, invoke):
        result = invoke("resume", "dev")
        assert result.exit_code == 1
        assert "no interrupted release" in result.output

        result = invoke("acknowledge", "dev")
        assert result.exit_code == 0
        assert "accepts automated releases" in result.output
