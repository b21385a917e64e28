"""Tests for the server entry point."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from captiongate import __main__ as entry
from tests.factories import get_test_settings


@pytest.mark.unit
class TestMain:
    def test_runs_uvicorn_with_server_settings(self) -> None:
        settings = get_test_settings(server={"host": "127.0.0.1", "port": 9100, "workers": 1})

        with (
            patch.object(entry, "get_settings", return_value=settings),
            patch.object(entry, "configure_logging") as configure,
            patch.object(entry.uvicorn, "run") as run,
        ):
            entry.main()

        configure.assert_called_once_with(settings.logging.level, settings.logging.format)
        args, kwargs = run.call_args
        assert args == ("captiongate.app:create_app",)
        assert kwargs["factory"] is True
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9100
        assert kwargs["workers"] == 1
        assert kwargs["proxy_headers"] is True

    def test_warns_when_workers_split_fallback_state(self) -> None:
        logger = MagicMock()
        with patch.object(entry, "logger", logger):
            entry.warn_on_split_state(get_test_settings(server={"workers": 4}))
            entry.warn_on_split_state(
                get_test_settings(server={"workers": 4}, storage={"fallback_enabled": False})
            )
            entry.warn_on_split_state(get_test_settings(server={"workers": 1}))

        assert logger.warning.call_count == 1
        assert logger.warning.call_args.args == ("server.per_worker_fallbacks",)
