"""Tests for the command-line logging setup."""

import io
import logging
import os

from config_manager.observability.logging import configure_logging


class TestConfigureLogging:
    def test_stream_and_file(self, tmp_path):
        stream = io.StringIO()
        log_file = str(tmp_path / "logs" / "sync.log")
        configure_logging(log_file, stream=stream)
        logging.getLogger("config_manager.core.orchestrator").info("Starting sync")

        assert "[INFO   ] Starting sync" in stream.getvalue()
        with open(log_file) as f:
            assert "Starting sync" in f.read()

    def test_verbose_enables_debug(self):
        stream = io.StringIO()
        configure_logging(verbose=True, stream=stream)
        logging.getLogger("config_manager.scripts").debug("details")
        assert "details" in stream.getvalue()

    def test_info_is_default(self):
        stream = io.StringIO()
        configure_logging(stream=stream)
        logging.getLogger("config_manager").debug("hidden")
        assert stream.getvalue() == ""

    def test_reconfigure_replaces_handlers(self):
        first, second = io.StringIO(), io.StringIO()
        configure_logging(stream=first)
        logger = configure_logging(stream=second)
        assert len(logger.handlers) == 1
        logger.info("once")
        assert first.getvalue() == ""
        assert "once" in second.getvalue()

    def test_unwritable_log_file_is_skipped(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        stream = io.StringIO()
        logger = configure_logging(os.path.join(str(blocker), "sync.log"), stream=stream)
        assert len(logger.handlers) == 1
        assert "Cannot open log file" in stream.getvalue()
