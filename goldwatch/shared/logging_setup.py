#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
from typing import Union

from .colored_logging import setup_colored_logging


def level_from_name(name: Union[str, int]) -> int:
    if isinstance(name, int):
        return name
    return getattr(logging, str(name).upper(), logging.INFO)


def get_logger(name: str, level: Union[str, int] = logging.INFO) -> logging.Logger:
    """Return a named logger, installing the colored console handler on first use."""
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        setup_colored_logging(level=level_from_name(level))
    return logger
