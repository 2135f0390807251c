"""Structured JSON logging for gitanalyzer.

Every entry carries {timestamp, level, logger, service, event} plus whatever
context the caller bound (username, fingerprint, batch, ...).  Entries go to
stderr so stdout stays free for the produced profile.
"""

from __future__ import annotations

import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener

import structlog

_listener: QueueListener | None = None

# Chatty third-party loggers kept at WARNING unless debugging.
_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(service: str = "gitanalyzer", level: str = "info") -> None:
    """Route structlog and stdlib logging through one background JSON writer.

    Call before the first log line.  Calling again replaces the previous
    listener, so tests and repeated CLI runs do not stack handlers.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    global _listener
    if _listener is not None:
        _listener.stop()

    # Records are queued and written by the listener thread, off the event loop.
    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=10_000)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(log_level)
    _listener = QueueListener(log_queue, stderr_handler, respect_handler_level=True)
    _listener.start()

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(QueueHandler(log_queue))
    root.setLevel(log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=_processors(service),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def stop_logging() -> None:
    """Drain queued records and stop the writer thread."""
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None


def _processors(service: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _add_service(service),
        structlog.processors.JSONRenderer(),
    ]


def _add_service(service: str) -> structlog.types.Processor:
    """Processor stamping *service* on each event."""

    def processor(
        _logger: structlog.types.WrappedLogger,
        _method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["service"] = service
        return event_dict

    return processor
