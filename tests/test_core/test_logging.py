"""Tests for pulsewatch/core/logging.py."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
import structlog

from pulsewatch.core.config import LoggingConfig, reset_settings
from pulsewatch.core.logging import setup_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    reset_settings()


class TestSetupLogging:
    def test_level_from_config(self) -> None:
        setup_logging(config=LoggingConfig(level="warning"))
        assert logging.getLogger().level == logging.WARNING

    def test_level_override(self) -> None:
        setup_logging(level="DEBUG", config=LoggingConfig(level="ERROR"))
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(level="chatty", config=LoggingConfig())
        assert logging.getLogger().level == logging.INFO

    def test_single_handler(self) -> None:
        setup_logging(config=LoggingConfig())
        setup_logging(config=LoggingConfig(format="console"))
        assert len(logging.getLogger().handlers) == 1

    def test_http_client_loggers_quieted(self) -> None:
        setup_logging(level="DEBUG", config=LoggingConfig())
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(config=LoggingConfig(format="json"))
        structlog.stdlib.get_logger("pulsewatch.test").info("probe_done", target_id="api")
        err = capsys.readouterr().err
        assert '"event": "probe_done"' in err
        assert '"target_id": "api"' in err
