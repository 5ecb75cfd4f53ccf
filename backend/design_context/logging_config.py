"""Logging setup for the design-context pipeline.

Modules log through ``logging.getLogger("design_context.<area>")``; only the
driver attaches handlers, on the ``design_context`` parent, so library use
stays silent unless the caller configures logging itself.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

# Log directory: configurable via LOG_DIR env var for Docker
LOG_DIR = Path(os.getenv("LOG_DIR", str(Path(__file__).parent.parent / "logs")))

# Threshold for the pipeline logger (DEBUG shows per-node rule warnings)
LOG_LEVEL = os.getenv("DESIGN_CONTEXT_LOG_LEVEL", "INFO").upper()

# Names already given handlers in this process
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str, level: int = logging.INFO) -> logging.Logger:
    """Attach a file handler and a console handler to ``name`` once.

    Args:
        name: Logger name (e.g., 'design_context')
        filename: Log file name under LOG_DIR (e.g., 'design_context.log')
        level: Threshold for the logger and both handlers

    Returns:
        Configured logger instance
    """
    if name in _configured_loggers:
        return logging.getLogger(name)

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    file_handler = logging.FileHandler(LOG_DIR / filename, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
    ))
    # Console goes to stderr so JSON on stdout stays parseable
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(message)s"
    ))
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        logger.addHandler(handler)

    _configured_loggers.add(name)
    return logger


def get_pipeline_logger() -> logging.Logger:
    """Parent logger for the pipeline; ``design_context.*`` children propagate here."""
    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    return setup_logger("design_context", "design_context.log", level=level)
