"""Tests for the package version and the console entry point."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from unittest.mock import patch

import pytest

import nodestrap
from nodestrap.cli import _parse_args


class TestPackageVersion:
    def test_fallback_when_not_installed(self, monkeypatch):
        def _missing(_: str) -> str:
            raise PackageNotFoundError

        monkeypatch.setattr(nodestrap, "_distribution_version", _missing)

        assert nodestrap._resolve_version() == "0.0.0+local"

    def test_version_flag_prints_package_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _parse_args(["--version"])
        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == f"nodestrap {nodestrap.__version__}"


class TestMain:
    def test_exit_code_comes_from_run_cli(self):
        with (
            patch("nodestrap.cli.run_cli", return_value=3) as mock_run,
            pytest.raises(SystemExit) as exc_info,
        ):
            nodestrap.main()
        mock_run.assert_called_once_with()
        assert exc_info.value.code == 3
