"""Tests for the command line entry point."""

from __future__ import annotations

from unittest.mock import patch

from src.main import run_probe

from tests.helpers import fail, ok


class TestRunProbe:
    @patch("src.main.execute", return_value=ok())
    def test_success_exit_code(self, mock_execute) -> None:
        assert run_probe("http-head", "https://example.com", None, 2000) == 0
        target, timeout = mock_execute.call_args.args
        assert target.url == "https://example.com"
        assert target.port == 443
        assert timeout == 2000

    @patch("src.main.execute", return_value=fail())
    def test_failure_exit_code(self, mock_execute) -> None:
        assert run_probe("tcp", "db.internal", 5432, 1000) == 1
        target, _ = mock_execute.call_args.args
        assert target.host == "db.internal"
        assert target.port == 5432

    @patch("src.main.execute")
    def test_invalid_probe(self, mock_execute) -> None:
        assert run_probe("tcp", "db.internal", None, 1000) == 2
        mock_execute.assert_not_called()
