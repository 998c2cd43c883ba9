"""Tests for the command-line entrypoint."""

from __future__ import annotations

from unittest.mock import patch

from signalrelay.interfaces.cli.cli import _cli_overrides, _parse_args, start


class TestCliOverrides:
    def test_flags_map_to_flat_keys(self) -> None:
        args = _parse_args(
            ["--workers", "3", "--no-refresh", "--log-level", "DEBUG", "--log-format", "json"]
        )
        assert _cli_overrides(args) == {
            "worker_pool_size": 3,
            "refresh_enabled": False,
            "log_level": "DEBUG",
            "log_format": "json",
        }

    def test_no_flags(self) -> None:
        assert _cli_overrides(_parse_args([])) == {}


class TestStart:
    def test_serves_configured_app(self) -> None:
        with (
            patch("signalrelay.interfaces.cli.cli.uvicorn.run") as run,
            patch("signalrelay.interfaces.cli.cli.configure_logging", return_value={}),
        ):
            start(["--host", "127.0.0.1", "--port", "9000", "--workers", "4"])

        app = run.call_args.args[0]
        assert app.state.config.resolver.worker_pool_size == 4
        assert run.call_args.kwargs["host"] == "127.0.0.1"
        assert run.call_args.kwargs["port"] == 9000
