# -*- coding: utf-8 -*-
"""
Process logging configuration.

Routes logs by severity for correct container/platform classification:
- INFO, WARNING -> STDOUT
- ERROR, CRITICAL -> STDERR

Uses QueueHandler + QueueListener so request handlers never block on
stdout/stderr; only the listener thread does.

Structured fields passed through log_event (component, operation, outcome,
correlation_id, reason, duration_ms) are appended to the line as key=value.
"""

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener
from typing import Optional

STRUCTURED_FIELDS = ("component", "operation", "outcome", "correlation_id", "duration_ms", "reason")


class MaxLevelFilter(logging.Filter):
    """
    Allows only records up to a specified level (inclusive).
    Keeps ERROR/CRITICAL out of stdout.
    """

    def __init__(self, max_level):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


class StructuredFormatter(logging.Formatter):
    """Standard line format plus any structured fields present on the record."""

    def format(self, record):
        line = super().format(record)
        fields = [
            f"{name}={getattr(record, name)}"
            for name in STRUCTURED_FIELDS
            if getattr(record, name, None) is not None
        ]
        if fields:
            line = f"{line} | {' '.join(fields)}"
        return line


_log_listener: Optional[QueueListener] = None


def setup_logging(level: str = "INFO"):
    """
    Install QueueHandler on the root logger and start the listener thread.

    Must be called before any logger is used. Calling it twice replaces the
    previous listener.
    """
    global _log_listener

    _stop_log_listener()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter = StructuredFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(MaxLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    log_queue = queue.Queue()
    root_logger.addHandler(QueueHandler(log_queue))

    _log_listener = QueueListener(
        log_queue,
        stdout_handler,
        stderr_handler,
        respect_handler_level=True,
    )
    _log_listener.start()
    atexit.register(_stop_log_listener)


def _stop_log_listener():
    """Stop the queue listener (called at exit)."""
    global _log_listener
    if _log_listener is not None:
        _log_listener.stop()
        _log_listener = None
