"""
Tests for the command-line interface.
"""

import os
from pathlib import Path
from unittest import mock

import pytest

from cronlog.cli import CronlogCLI
from cronlog.core.errors import ConfigurationError


@pytest.fixture
def cli(tmp_path: Path):
    environ = {
        "CRONLOG_DB_PATH": str(tmp_path / "db" / "cronlog.sqlite"),
        "CRONLOG_OUTPUT_DIRECTORY": str(tmp_path / "staging"),
        "CRONLOG_LOCAL_STORAGE_ROOT": str(tmp_path / "archive"),
        "CRONLOG_LOG_DIR": str(tmp_path / "logs"),
        "CRONLOG_DATA_ROOT": str(tmp_path),
        "CRONLOG_DB_RETENTION_DAYS": "7",
    }
    with (
        mock.patch.dict(os.environ, environ),
        mock.patch("cronlog.cli.setup_logging"),
        mock.patch("cronlog.cli.ensure_data_directories"),
    ):
        yield CronlogCLI()


class TestCommands:
    """Test commands that need no data source."""

    def test_migrate(self, cli):
        result = cli.migrate()

        assert result["valid"] is True
        assert result["current_version"] >= 1

    def test_create_daily_and_status(self, cli):
        job = cli.create_daily("2025-08-25")
        rows = cli.status("2025-08-25", "14-15")

        assert len(job["hour_slots"]) == 24
        assert rows == [job["hour_slots"][14]]

    def test_status_overview(self, cli):
        cli.create_daily("2025-08-25")

        overview = cli.status()

        assert overview["slots"]["pending"] == 24
        assert overview["failed"] == []
        assert overview["scheduler"] == "stopped"

    def test_status_for_unknown_job(self, cli):
        assert "error" in cli.status("1999-01-01")

    def test_sweep_dry_run(self, cli):
        cli.create_daily("2020-01-01")

        result = cli.sweep(target="database", dry_run=True)

        (report,) = result["reports"]
        assert report["candidates"] == ["2020-01-01"]
        assert report["deleted"] == 0

    def test_config_shows_effective_settings(self, cli):
        config = cli.config()

        assert config["db_retention_days"] == 7
        assert config["upload_provider"] == "local"

    def test_process_without_data_source_fails(self, cli):
        with pytest.raises(ConfigurationError) as exc_info:
            cli.process("2025-08-25", "14-15")

        assert "No data source configured" in str(exc_info.value)

    def test_invalid_configuration_exits(self, tmp_path: Path):
        with (
            mock.patch.dict(os.environ, {"CRONLOG_TIMEZONE": "Nowhere/Special"}),
            mock.patch("cronlog.cli.setup_logging"),
            pytest.raises(SystemExit) as exc_info,
        ):
            CronlogCLI().config()

        assert exc_info.value.code == 2
