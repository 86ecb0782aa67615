"""Tests for the Logfire observability setup."""

import sys
from unittest.mock import patch

import logfire
import pytest

from library_circulation.observability import initialize_observability
from library_circulation.observability.config import (
    DevelopmentConfig,
    ObservabilityConfig,
    ProductionConfig,
    get_environment_config,
)


class TestObservabilityConfig:
    """Spans only leave the process with a token and sending enabled."""

    def test_nothing_sent_without_token(self, monkeypatch):
        monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)
        assert not ProductionConfig().will_send

    def test_production_with_token(self, monkeypatch):
        monkeypatch.setenv("LOGFIRE_TOKEN", "token-123")
        assert ProductionConfig().will_send

    @pytest.mark.parametrize(
        ("environment", "expected"),
        [
            ("production", ProductionConfig),
            ("development", DevelopmentConfig),
            ("staging", ObservabilityConfig),
        ],
    )
    def test_environment_selection(self, monkeypatch, environment, expected):
        monkeypatch.setenv("ENVIRONMENT", environment)
        assert type(get_environment_config()) is expected


class TestInitialize:
    """Test Logfire initialization."""

    def test_disabled(self):
        with patch("library_circulation.observability.logfire.configure") as configure:
            config = initialize_observability(ObservabilityConfig(enabled=False))

        configure.assert_not_called()
        assert not config.enabled

    def test_local_only(self):
        config = ObservabilityConfig(token="", console_output=False, send_to_logfire=True)

        with patch("library_circulation.observability.logfire.configure") as configure:
            initialize_observability(config)

        kwargs = configure.call_args.kwargs
        assert kwargs["send_to_logfire"] is False
        assert kwargs["console"] is False
        assert kwargs["token"] is None

    def test_console_output_uses_stderr(self):
        with patch("library_circulation.observability.logfire.configure") as configure:
            initialize_observability(DevelopmentConfig(token=""))

        assert configure.call_args.kwargs["console"].output is sys.stderr

    def test_spans_stay_off_stdout(self, capsys):
        try:
            initialize_observability(DevelopmentConfig(token=""))
            with logfire.span("tool.execution.check_out_copy"):
                pass
            logfire.force_flush()
        finally:
            logfire.configure(send_to_logfire=False, console=False)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "check_out_copy" in captured.err
