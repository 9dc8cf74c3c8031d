#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Colored logging formatter for the goldwatch console.

Adds ANSI color codes to log levels:
- DEBUG: Cyan
- INFO: Green
- WARNING: Yellow
- ERROR: Red
- CRITICAL: Bold Red
"""
from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(module)s.%(funcName)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str = LOG_FORMAT, datefmt: Optional[str] = DATE_FORMAT, use_colors: bool = True, stream: Optional[TextIO] = None):
        """
        Args:
            fmt: Format string for log messages
            datefmt: Format string for timestamps
            use_colors: Whether to use colors (disabled when the stream is not a TTY)
            stream: Stream the handler writes to; defaults to stderr
        """
        super().__init__(fmt, datefmt)
        target = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and hasattr(target, 'isatty') and target.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not (self.use_colors and record.levelname in self.COLORS):
            return super().format(record)
        orig_levelname = record.levelname
        record.levelname = f"{self.COLORS[orig_levelname]}{orig_levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname


def setup_colored_logging(level: int = logging.INFO, fmt: str = LOG_FORMAT, datefmt: Optional[str] = DATE_FORMAT, stream: Optional[TextIO] = None) -> None:
    """
    Configure the root logger with a single colored console handler.

    Args:
        level: Logging level (e.g., logging.INFO, logging.DEBUG)
        fmt: Format string for log messages
        datefmt: Format string for timestamps
        stream: Output stream, stderr by default
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    target = stream if stream is not None else sys.stderr
    console_handler = logging.StreamHandler(target)
    console_handler.setFormatter(ColoredFormatter(fmt=fmt, datefmt=datefmt, stream=target))

    root.setLevel(level)
    root.addHandler(console_handler)

    # requests/urllib3 chatter drowns the per-tick lines at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
