"""Tests for cmdvault.logging_config module."""

import logging

import pytest

from cmdvault.logging_config import log_sync, log_sync_event, setup_cmdvault_logging


@pytest.fixture(autouse=True)
def clean_cmdvault_logger():
    """Remove all handlers from the cmdvault logger before/after each test."""
    logger = logging.getLogger("cmdvault")
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)


@pytest.fixture
def log_dir(isolated_home):
    return isolated_home / "logs"


class TestSetupCmdvaultLogging:
    def test_returns_cmdvault_logger(self, log_dir):
        logger = setup_cmdvault_logging()

        assert logger.name == "cmdvault"
        assert log_dir.exists()

    def test_log_file_named_with_date(self, log_dir):
        setup_cmdvault_logging()

        assert len(list(log_dir.glob("local-*.log"))) == 1

    def test_no_duplicate_handlers(self, log_dir):
        setup_cmdvault_logging()
        logger = setup_cmdvault_logging()

        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1

    def test_debug_adds_console_handler(self, log_dir):
        logger = setup_cmdvault_logging(level="debug")

        console = [
            h
            for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]
        assert len(console) == 1
        assert logger.level == logging.DEBUG

    def test_invalid_level_falls_back_to_info(self, log_dir):
        assert setup_cmdvault_logging(level="LOUD").level == logging.INFO

    def test_child_loggers_reach_the_file(self, log_dir):
        logger = setup_cmdvault_logging()
        logging.getLogger("cmdvault.sync.engine").info("pushed 3 commands")
        for handler in logger.handlers:
            handler.flush()

        content = next(log_dir.glob("local-*.log")).read_text()
        assert "cmdvault.sync.engine" in content
        assert "pushed 3 commands" in content


class TestSyncEventLog:
    def test_log_sync_event_line_format(self, log_dir):
        log_sync_event("sync", "direction=pull, count=2", profile="work")

        line = next(log_dir.glob("sync-events-*.log")).read_text().strip()
        assert line.endswith("| sync | profile=work | direction=pull, count=2")

    def test_log_sync_details(self, log_dir):
        log_sync("default", "push", 4, version=7)
        log_sync("default", "pull", 1, errors=1)

        lines = next(log_dir.glob("sync-events-*.log")).read_text().splitlines()
        assert "direction=push, count=4, errors=0, version=7" in lines[0]
        assert lines[1].endswith("direction=pull, count=1, errors=1")
