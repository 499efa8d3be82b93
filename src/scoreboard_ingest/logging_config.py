"""Structlog + stdlib logging setup shared by the API and the CLI.

Both ``structlog.get_logger()`` and plain ``logging.getLogger(__name__)``
calls end up in a single stdout handler, rendered as JSON lines in
production or as coloured console output during development.
"""

import logging
import sys

import structlog

# Chatty third-party loggers that would otherwise log every HTTP round trip
_QUIET_LOGGERS = ("httpx", "httpcore", "google_genai", "aiosqlite")


def configure_logging(json_output: bool = True, log_level: str = "INFO") -> None:
    """Configure unified logging for both structlog and stdlib.

    Args:
        json_output: Render JSON lines when ``True``; use structlog's
            console renderer otherwise.
        log_level: Root log level name (``"DEBUG"``, ``"INFO"``, ...).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper()))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
