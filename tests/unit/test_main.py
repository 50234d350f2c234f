"""Tests for the CLI: error reporting and connection cleanup."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import main
from harvester.core.errors import StorageError


def _argv(tmp_path: Path, *args: str) -> list[str]:
    return [*args, "--config", str(tmp_path / "missing.yaml")]


class TestConnectionCleanup:
    def test_submit_closes_connection_on_error(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        conn = MagicMock()
        with (
            patch("main.init_db", return_value=conn),
            patch("main.submit_job", side_effect=StorageError("disk I/O error")),
            pytest.raises(SystemExit) as exc_info,
        ):
            main.main(_argv(tmp_path, "submit", "--type", "profiles", "--url", "u"))

        assert exc_info.value.code == 1
        conn.close.assert_called_once()
        assert "Error: disk I/O error" in capsys.readouterr().err

    def test_cancel_closes_connection_on_error(self, tmp_path: Path) -> None:
        conn = MagicMock()
        with (
            patch("main.init_db", return_value=conn),
            patch("main.cancel_job", side_effect=StorageError("locked")),
            pytest.raises(SystemExit),
        ):
            main.main(_argv(tmp_path, "cancel", "3"))

        conn.close.assert_called_once()

    def test_set_account_status_closes_connection_on_error(self, tmp_path: Path) -> None:
        conn = MagicMock()
        with (
            patch("main.init_db", return_value=conn),
            patch("main.set_validation_status", side_effect=StorageError("locked")),
            pytest.raises(SystemExit),
        ):
            main.main(_argv(tmp_path, "set-account-status", "1", "INVALID"))

        conn.close.assert_called_once()


class TestSubmit:
    def test_creates_job(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        config = tmp_path / "settings.yaml"
        config.write_text(f"database:\n  path: {tmp_path / 'cli.db'}\n")

        main.main(["submit", "--type", "profiles", "--url", "https://www.linkedin.com/in/a/",
                   "--config", str(config)])

        assert "Created job 1" in capsys.readouterr().out
