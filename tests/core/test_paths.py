"""
Tests for the paths module.

- Creates db/, logs/, staging/, archive/ directories on first run
- Builds artifact paths and storage keys for hour slots
"""

import os
from datetime import date, datetime
from pathlib import Path
from unittest import mock


class TestDataDirectories:
    """Test data directory creation and management."""

    def test_ensure_data_directories_creates_all_required_dirs(self, tmp_path: Path):
        """Test that ensure_data_directories creates all required directories."""
        # Override DATA_ROOT via environment variable
        with mock.patch.dict(os.environ, {"CRONLOG_DATA_ROOT": str(tmp_path)}):
            # Re-import to pick up the new DATA_ROOT
            import importlib

            from cronlog.core import paths

            importlib.reload(paths)

            assert not (tmp_path / "db").exists()
            assert not (tmp_path / "staging").exists()

            results = paths.ensure_data_directories()

            assert (tmp_path / "db").exists()
            assert (tmp_path / "logs").exists()
            assert (tmp_path / "staging").exists()
            assert (tmp_path / "archive").exists()

            assert results["db"] is True
            assert results["staging"] is True
            assert paths.DB_PATH == tmp_path / "db" / "cronlog.sqlite"

    def test_ensure_data_directories_is_idempotent(self, tmp_path: Path):
        """Test that ensure_data_directories can be called multiple times safely."""
        with mock.patch.dict(os.environ, {"CRONLOG_DATA_ROOT": str(tmp_path)}):
            import importlib

            from cronlog.core import paths

            importlib.reload(paths)

            results1 = paths.ensure_data_directories()
            assert sum(1 for v in results1.values() if v) > 0

            results2 = paths.ensure_data_directories()
            assert sum(1 for v in results2.values() if v) == 0  # Nothing new created


class TestSlotPaths:
    """Test artifact path and storage key generation."""

    def test_get_artifact_path(self, tmp_path: Path):
        from cronlog.core.paths import get_artifact_path

        path = get_artifact_path(tmp_path, date(2025, 8, 25), "14-15", "jsonl")

        assert path == tmp_path / "2025-08-25" / "14-15.jsonl"

    def test_get_artifact_path_accepts_datetime(self, tmp_path: Path):
        from cronlog.core.paths import get_artifact_path

        path = get_artifact_path(tmp_path, datetime(2025, 8, 25, 23, 59), "23-00", "csv")

        assert path == tmp_path / "2025-08-25" / "23-00.csv"

    def test_get_artifact_path_is_unique_per_attempt(self, tmp_path: Path):
        from cronlog.core.paths import get_artifact_path

        first = get_artifact_path(tmp_path, date(2025, 8, 25), "14-15", "json", attempt=1)
        second = get_artifact_path(tmp_path, date(2025, 8, 25), "14-15", "json", attempt=2)

        assert first == tmp_path / "2025-08-25" / "14-15.attempt-1.json"
        assert first != second

    def test_get_storage_key_is_relative(self):
        from cronlog.core.paths import get_storage_key

        assert get_storage_key(date(2025, 1, 2), "00-01", "json") == "2025-01-02/00-01.json"
