#!/usr/bin/env python3
"""
Tests for the colored console logging setup
"""
import io
import logging
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from goldwatch.shared.colored_logging import ColoredFormatter, setup_colored_logging
from goldwatch.shared.logging_setup import get_logger, level_from_name


class FakeTTY(io.StringIO):
    def isatty(self):
        return True


def _record(level=logging.WARNING):
    return logging.LogRecord("goldwatch.test", level, __file__, 1, "price moved", None, None)


def test_colors_only_on_tty():
    plain = ColoredFormatter(fmt="%(levelname)s %(message)s", stream=io.StringIO())
    colored = ColoredFormatter(fmt="%(levelname)s %(message)s", stream=FakeTTY())
    assert plain.format(_record()) == "WARNING price moved"
    assert colored.format(_record()) == "\033[33mWARNING\033[0m price moved"


def test_record_levelname_restored():
    rec = _record()
    ColoredFormatter(fmt="%(levelname)s", stream=FakeTTY()).format(rec)
    assert rec.levelname == "WARNING"


def test_setup_replaces_handlers():
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        buf = io.StringIO()
        setup_colored_logging(level=logging.DEBUG, fmt="%(levelname)s:%(message)s", stream=buf)
        setup_colored_logging(level=logging.DEBUG, fmt="%(levelname)s:%(message)s", stream=buf)
        assert len(root.handlers) == 1
        logging.getLogger("goldwatch.test").debug("tick")
        assert buf.getvalue() == "DEBUG:tick\n"
        assert logging.getLogger("urllib3").level == logging.INFO
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])


def test_level_from_name():
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name(logging.ERROR) == logging.ERROR
    assert level_from_name("bogus") == logging.INFO


def test_get_logger_returns_named_logger():
    assert get_logger("goldwatch.core.controller").name == "goldwatch.core.controller"
