"""
Logging for the fractalgarden package.

Render workers are threads of the same process, so there is a single package
logger. ``configure_logging`` attaches handlers to it directly. ``QueuedLogging``
instead gives it only a ``QueueHandler`` and lets a listener thread do the
formatting and file I/O; ``stop`` drains the queue and puts back whatever the
logger carried before ``start``.
"""

import logging
import logging.handlers
import queue
from typing import List, Optional, Tuple


LOGGER_NAME = "fractalgarden"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s.%(msecs)03dZ %(threadName)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def build_handlers(
    *,
    level: int = logging.INFO,
    console: bool = True,
    log_file: Optional[str] = None,
    rotate_bytes: int = 5 * 1024 * 1024,
    rotate_count: int = 5,
) -> List[logging.Handler]:
    fmt = _build_formatter()
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=rotate_bytes, backupCount=rotate_count, encoding="utf-8"
        ))
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(fmt)
    return handlers


def _detach_all(logger: logging.Logger) -> List[logging.Handler]:
    handlers = list(logger.handlers)
    for h in handlers:
        logger.removeHandler(h)
    return handlers


def configure_logging(*, level: int = logging.INFO, console: bool = True, log_file: Optional[str] = None) -> logging.Logger:
    """Synchronous setup: handlers sit on the package logger itself."""
    logger = get_logger()
    _detach_all(logger)
    logger.setLevel(level)
    logger.propagate = False
    for h in build_handlers(level=level, console=console, log_file=log_file):
        logger.addHandler(h)
    return logger


class QueuedLogging:
    """Route package records through a queue so render threads never block on handler I/O."""

    def __init__(self, *, level: int = logging.INFO, console: bool = True, log_file: Optional[str] = None):
        self.level = level
        self.handlers = build_handlers(level=level, console=console, log_file=log_file)
        self.queue: "queue.Queue[logging.LogRecord]" = queue.Queue(-1)
        self._queue_handler = logging.handlers.QueueHandler(self.queue)
        self._listener = logging.handlers.QueueListener(self.queue, *self.handlers, respect_handler_level=True)
        self._saved: Optional[Tuple[List[logging.Handler], int, bool]] = None

    @property
    def running(self) -> bool:
        return self._saved is not None

    def start(self) -> "QueuedLogging":
        if self.running:
            return self
        logger = get_logger()
        self._saved = (_detach_all(logger), logger.level, logger.propagate)
        self._listener.start()
        logger.setLevel(self.level)
        logger.propagate = False
        logger.addHandler(self._queue_handler)
        return self

    def stop(self) -> None:
        if not self.running:
            return
        logger = get_logger()
        logger.removeHandler(self._queue_handler)
        # stop() flushes everything already queued
        self._listener.stop()
        handlers, level, propagate = self._saved
        for h in handlers:
            logger.addHandler(h)
        logger.setLevel(level)
        logger.propagate = propagate
        for h in self.handlers:
            h.close()
        self._saved = None

    def __enter__(self) -> "QueuedLogging":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def setup_logging(*, level: int = logging.INFO, console: bool = True, log_file: Optional[str] = None) -> QueuedLogging:
    """Start queued logging. The caller owns the result and must ``stop()`` it."""
    return QueuedLogging(level=level, console=console, log_file=log_file).start()
