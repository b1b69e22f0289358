"""Test logging configuration."""

import logging
from pathlib import Path

import pytest
import structlog
from structlog.testing import LogCapture

from cloudflared_manager.common.logging import (
    LOG_LEVEL_ENV,
    get_logger,
    resolve_level,
    setup_logging,
)


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Setup before each test - reset logging configuration."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def test_setup_logging_default(self) -> None:
        """Default setup installs a single console handler at INFO."""
        setup_logging()
        root_logger = logging.getLogger()
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0], logging.StreamHandler)

    def test_setup_logging_with_level(self) -> None:
        """Test logging setup with custom level."""
        setup_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_replaces_handlers(self) -> None:
        """Calling setup twice does not duplicate handlers."""
        setup_logging()
        setup_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_setup_logging_json_format(self) -> None:
        """Test logging setup with JSON format."""
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("tunnel started", name="web", pid=42)

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "tunnel started"
        assert cap.entries[0]["name"] == "web"
        assert cap.entries[0]["pid"] == 42

    def test_setup_logging_with_file(self, tmp_path: Path) -> None:
        """Test logging setup with file output."""
        log_file = tmp_path / "manager.log"
        setup_logging(log_file=str(log_file))

        python_logger = logging.getLogger("test_file")
        python_logger.info("file message")

        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()
        assert "file message" in log_file.read_text()

    def test_get_logger(self) -> None:
        """Test getting a logger instance."""
        setup_logging()
        logger = get_logger("test_module")
        assert hasattr(logger, "info")
        assert hasattr(logger, "debug")
        assert hasattr(logger, "error")

    def test_level_from_environment(self, monkeypatch) -> None:
        """The environment sets the level when none is passed."""
        monkeypatch.setenv(LOG_LEVEL_ENV, "warning")
        setup_logging()
        assert logging.getLogger().level == logging.WARNING

    def test_explicit_level_wins_over_environment(self, monkeypatch) -> None:
        monkeypatch.setenv(LOG_LEVEL_ENV, "DEBUG")
        setup_logging(level="ERROR")
        assert logging.getLogger().level == logging.ERROR

    def test_unknown_level(self, monkeypatch) -> None:
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        with pytest.raises(ValueError, match="Unknown log level 'VERBOSE'"):
            resolve_level("verbose")

    def test_default_level(self, monkeypatch) -> None:
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        assert resolve_level() == logging.INFO
