"""Tests for logging setup."""

import logging
import re

from pgvault.log import LevelPrefixFormatter, init_logging, log_output


def make_record(level, msg):
    return logging.LogRecord("pgvault.test", level, __file__, 1, msg, None, None)


class TestLevelPrefixFormatter:
    """Tests for LevelPrefixFormatter."""

    def test_short_level_names(self):
        formatter = LevelPrefixFormatter()
        assert formatter.format(make_record(logging.WARNING, "careful")).endswith(" WARN: careful")
        assert formatter.format(make_record(logging.CRITICAL, "dead")).endswith(" FATAL: dead")

    def test_timestamp_layout(self):
        line = LevelPrefixFormatter().format(make_record(logging.INFO, "hello"))
        assert re.fullmatch(r"\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} INFO: hello", line)

    def test_microseconds_when_verbose(self):
        line = LevelPrefixFormatter(microseconds=True).format(make_record(logging.DEBUG, "x"))
        assert re.match(r"\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}\.\d{6} DEBUG: x", line)


class TestInitLogging:
    """Tests for init_logging."""

    def test_levels(self):
        assert init_logging(verbose=True).level == logging.DEBUG
        assert init_logging(quiet=True).level == logging.WARNING
        assert init_logging().level == logging.INFO

    def test_single_handler_after_repeated_calls(self):
        init_logging()
        logger = init_logging()
        assert len([h for h in logger.handlers if getattr(h, "_pgvault", False)]) == 1


class TestLogOutput:
    """Tests for log_output."""

    def test_one_record_per_line(self, caplog):
        logger = logging.getLogger("pgvault.test")
        with caplog.at_level(logging.INFO, logger="pgvault.test"):
            log_output(logger, "[app] ", b"line one\n\nline two\n", failed=False)

        assert [r.getMessage() for r in caplog.records] == ["[app] line one", "[app] line two"]
        assert all(r.levelno == logging.INFO for r in caplog.records)

    def test_failure_logged_as_error(self, caplog):
        logger = logging.getLogger("pgvault.test")
        log_output(logger, "", b"pg_dump: error: boom\n", failed=True)
        assert caplog.records[-1].levelno == logging.ERROR
