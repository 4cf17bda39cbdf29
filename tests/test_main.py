"""Tests for the command line entry point (python/main.py)"""

import logging
from unittest.mock import MagicMock, patch

import pytest

import main
from gc_listener.logging_utils import parse_log_level


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("CONFIG_FILE", "WORKERS", "GC_MODE", "KEEP_N", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONFIG_FILE", "/nonexistent/config.yaml")


class TestParseArguments:
    def test_defaults_to_serve(self):
        assert main.parse_arguments([]).command == "serve"

    def test_global_options(self):
        args = main.parse_arguments(["--log-level", "debug", "prune"])

        assert args.command == "prune"
        assert args.log_level == "debug"


class TestMain:
    def test_invalid_configuration_exits_2(self, monkeypatch):
        monkeypatch.setenv("WORKERS", "0")

        assert main.main(["config"]) == 2

    def test_config_command_prints(self, capsys):
        assert main.main(["config"]) == 0
        assert "Current Configuration:" in capsys.readouterr().out

    @pytest.mark.parametrize("succeeded,code", [(True, 0), (False, 1)])
    @patch("main._install_signal_handlers")
    @patch("main.GCListener")
    def test_gc_command(self, mock_listener_cls, _signals, succeeded, code):
        listener = MagicMock()
        listener.collector.run.return_value = succeeded
        mock_listener_cls.from_config.return_value = listener

        assert main.main(["gc"]) == code
        listener.orchestrator.prune_and_reclaim.assert_not_called()

    @patch("main._install_signal_handlers")
    @patch("main.GCListener")
    def test_prune_command(self, mock_listener_cls, _signals):
        listener = MagicMock()
        listener.orchestrator.prune_and_reclaim.return_value.reclaimed = True
        mock_listener_cls.from_config.return_value = listener

        assert main.main(["prune"]) == 0
        listener.orchestrator.prune_and_reclaim.assert_called_once()

    @patch("main.HealthChecker")
    @patch("main.GCListener")
    def test_health_command(self, mock_listener_cls, mock_checker_cls):
        mock_checker_cls.return_value.print_health_report.return_value = False

        assert main.main(["health"]) == 1


class TestLogLevels:
    @pytest.mark.parametrize("value,expected", [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("fatal", logging.CRITICAL),
        ("", logging.INFO),
        ("verbose", logging.INFO),
        (logging.ERROR, logging.ERROR),
    ])
    def test_parse_log_level(self, value, expected):
        assert parse_log_level(value) == expected
