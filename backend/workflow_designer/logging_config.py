"""Logging for the workflow designer.

Three named loggers, each writing to its own file under ``LOG_DIR`` and to
the console:

- ``engine``: run lifecycle (started / completed / failed / cancelled)
- ``sse``: execute-stream connections
- ``api``: HTTP routes and service startup

Module-level ``logging.getLogger(__name__)`` loggers keep propagating to
the root logger as usual.
"""
from __future__ import annotations

import logging
from pathlib import Path

from .config import LOG_DIR, LOG_LEVEL

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str, log_dir: str | Path = LOG_DIR) -> logging.Logger:
    """Attach file and console handlers to logger ``name`` once."""
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(directory / filename, encoding="utf-8")
    fh.setFormatter(logging.Formatter(FILE_FORMAT))

    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger.addHandler(fh)
    logger.addHandler(sh)

    _configured_loggers.add(name)
    return logger


def get_engine_logger() -> logging.Logger:
    return setup_logger("engine", "engine.log")


def get_sse_logger() -> logging.Logger:
    return setup_logger("sse", "sse.log")


def get_api_logger() -> logging.Logger:
    return setup_logger("api", "api.log")
