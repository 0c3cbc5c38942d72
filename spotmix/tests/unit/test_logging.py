"""Tests for structured logging."""
import logging

import pytest

from spotmix.services.shared.config import Config
from spotmix.services.shared.logging import get_logger, setup_logging, setup_logging_from_config


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("test.module")
        assert isinstance(logger, logging.Logger)

    def test_prefixes_namespace(self):
        assert get_logger("music.aligner").name == "spotmix.music.aligner"

    def test_full_name_used_as_is(self):
        assert get_logger("spotmix.composer").name == "spotmix.composer"

    def test_same_name_returns_same_logger(self):
        assert get_logger("test.same") is get_logger("test.same")


class TestSetupLogging:
    def test_setup_with_level(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("spotmix").level == logging.DEBUG

    def test_setup_file_handler(self, tmp_dir):
        log_file = tmp_dir / "test.log"
        setup_logging(level="INFO", log_file=str(log_file))
        get_logger("test_file").info("test message")
        assert log_file.exists()
        assert "test message" in log_file.read_text()

    def test_repeated_setup_does_not_stack_handlers(self):
        setup_logging(level="INFO")
        setup_logging(level="INFO")
        assert len(logging.getLogger("spotmix").handlers) == 1

    def test_invalid_level_raises(self):
        with pytest.raises(ValueError):
            setup_logging(level="INVALID_LEVEL")

    def test_setup_from_config(self, sample_settings, tmp_dir):
        setup_logging_from_config(Config(str(sample_settings)))
        root = logging.getLogger("spotmix")
        assert root.level == logging.DEBUG
        get_logger("composer.timeline").debug("walk step")
        assert "walk step" in (tmp_dir / "test.log").read_text()

    def test_env_level_wins_over_config(self, sample_settings, monkeypatch):
        monkeypatch.setenv("SPOTMIX_LOG_LEVEL", "warning")
        root = setup_logging_from_config(Config(str(sample_settings)))
        assert root.level == logging.WARNING

    def test_lowercase_level_accepted(self):
        assert setup_logging(level="error").level == logging.ERROR
