"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from dataverse_migration.cli.main import cli


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("DATAVERSE_BRIDGE_CONFIG", raising=False)
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    def write(**overrides):
        data = {
            "source": {"url": "https://source.crm.dynamics.com", "token": "source-secret"},
            "target": {"url": "https://target.crm.dynamics.com", "token": "target-secret"},
            "entities": ["account", "contact"],
            "paths": {"report_dir": str(tmp_path / "reports")},
            **overrides,
        }
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return write


def invoke(runner, tmp_path, *args):
    return runner.invoke(cli, ["--log-file", str(tmp_path / "cli.log"), *args])


class TestConfigCommands:
    def test_validate(self, runner, tmp_path, config_file):
        result = invoke(runner, tmp_path, "--config", config_file(), "config", "validate")

        assert result.exit_code == 0, result.output
        assert "Configuration is valid!" in result.output
        assert (tmp_path / "reports").is_dir()

    def test_validate_without_entities(self, runner, tmp_path, config_file):
        result = invoke(runner, tmp_path, "--config", config_file(entities=[]), "config", "validate")

        assert result.exit_code != 0
        assert "No entities configured" in result.output

    def test_show_masks_tokens(self, runner, tmp_path, config_file):
        result = invoke(runner, tmp_path, "--config", config_file(), "config", "show")

        assert result.exit_code == 0, result.output
        assert "source-secret" not in result.output
        assert "(masked)" in result.output

    def test_missing_config(self, runner, tmp_path):
        result = invoke(runner, tmp_path, "config", "show")

        assert result.exit_code == 2


class TestMigrateRun:
    SUMMARY = {
        "migration_id": "abc12345",
        "status": "dry_run",
        "retrieved": {"account": 2},
        "entities": [],
        "total_records_retrieved": 2,
        "total_records_imported": 0,
        "total_records_failed": 0,
        "duration_seconds": 1.5,
        "import": None,
        "deactivation": None,
    }

    def test_dry_run(self, runner, tmp_path, config_file):
        with patch("dataverse_migration.cli.commands.migrate.MigrationCoordinator") as coordinator:
            coordinator.return_value.migrate_all = AsyncMock(return_value=dict(self.SUMMARY))

            result = invoke(
                runner, tmp_path, "--config", config_file(), "migrate", "run",
                "--dry-run", "-e", "account", "--no-progress",
            )

        assert result.exit_code == 0, result.output
        assert "Migration completed" in result.output
        config = coordinator.call_args.kwargs["config"]
        assert config.dry_run is True
        assert config.entities == ["account"]
        assert coordinator.call_args.kwargs["enable_progress"] is False

    def test_errors_exit_non_zero(self, runner, tmp_path, config_file):
        summary = dict(self.SUMMARY, status="completed_with_errors", total_records_failed=1)
        with patch("dataverse_migration.cli.commands.migrate.MigrationCoordinator") as coordinator:
            coordinator.return_value.migrate_all = AsyncMock(return_value=summary)

            result = invoke(runner, tmp_path, "--config", config_file(), "migrate", "run", "--yes")

        assert result.exit_code == 1
        assert "completed with errors" in result.output

    def test_declined_confirmation(self, runner, tmp_path, config_file):
        with patch("dataverse_migration.cli.commands.migrate.MigrationCoordinator") as coordinator:
            result = runner.invoke(
                cli,
                ["--log-file", str(tmp_path / "cli.log"), "--config", config_file(),
                 "migrate", "run"],
                input="n\n",
            )

        assert result.exit_code == 0
        assert "Operation cancelled." in result.output
        coordinator.assert_not_called()

    def test_no_entities(self, runner, tmp_path, config_file):
        result = invoke(
            runner, tmp_path, "--config", config_file(entities=[]), "migrate", "run", "--dry-run"
        )

        assert result.exit_code == 2
