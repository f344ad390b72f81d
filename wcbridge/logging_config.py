"""
Logging setup for the bridge.

The session manager, transport and chain client log through stdlib
``logging``; the relay logs structured events (``request_received``,
``submission_failed``, ...) with ``request_id`` and ``topic`` bound. Both end
up in one structlog pipeline: JSON lines normally, colored console output at
DEBUG. Output goes to stderr because ``wcbridge connect`` prompts on stdout.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import settings

# Chatty third-party loggers; pywalletconnect logs every relay frame at INFO
QUIET_LOGGERS = ("httpcore", "httpx", "pywalletconnect", "websocket")


def setup_logging(log_level: Optional[str] = None) -> None:
    """Route the bridge's stdlib and structlog loggers through one handler.

    Args:
        log_level: Override log level (default: from settings.log_level).
            The CLI passes ``--log-level`` here.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    is_dev = level == logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
