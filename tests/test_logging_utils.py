"""Tests for logging helpers."""

import contextlib
import logging
import time

from common.logging_utils import Timer, configure_logging, extra_context, is_debug_enabled
from constants import Constants


@contextlib.contextmanager
def bare_root_logger():
    """Run a block with no root handlers, restoring them before pytest detaches its own."""
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    for handler in saved_handlers:
        root.removeHandler(handler)
    try:
        yield root
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_explicit_level(self):
        with bare_root_logger() as root:
            configure_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1

    def test_env_level(self, monkeypatch):
        monkeypatch.setenv(Constants.ENV_LOG_LEVEL, "ERROR")
        with bare_root_logger() as root:
            configure_logging()
            assert root.level == logging.ERROR

    def test_unknown_level_defaults_to_info(self, monkeypatch):
        monkeypatch.delenv(Constants.ENV_LOG_LEVEL, raising=False)
        with bare_root_logger() as root:
            configure_logging("chatty")
            assert root.level == logging.INFO

    def test_handler_added_once(self):
        with bare_root_logger() as root:
            configure_logging("INFO")
            configure_logging("WARNING")
            assert len(root.handlers) == 1
            assert root.level == logging.WARNING

    def test_existing_handler_kept(self):
        with bare_root_logger() as root:
            existing = logging.NullHandler()
            root.addHandler(existing)
            configure_logging("INFO")
            assert root.handlers == [existing]

    def test_root_handlers_restored(self):
        root = logging.getLogger()
        before = list(root.handlers)
        with bare_root_logger():
            configure_logging("INFO")
        assert root.handlers == before


class TestHelpers:
    """Tests for the structured logging helpers."""

    def test_extra_context_drops_none(self):
        assert extra_context(event="resolve", target=None, count=0) == {"event": "resolve", "count": 0}

    def test_is_debug_enabled(self):
        logger = logging.getLogger("nodepack.test.debug")
        logger.setLevel(logging.DEBUG)
        assert is_debug_enabled(logger)
        logger.setLevel(logging.INFO)
        assert not is_debug_enabled(logger)

    def test_timer_measures_block(self):
        with Timer() as t:
            time.sleep(0.01)
        elapsed = t.duration_ms()
        assert elapsed >= 5
        assert t.duration_ms() == elapsed
