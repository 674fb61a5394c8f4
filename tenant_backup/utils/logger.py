# tenant_backup/utils/logger.py

"""
Structured logging helpers.

Every module does ``logger = get_logger(__name__)`` and logs a message plus
optional keyword context, e.g. ``logger.info("Loaded secret", secret_id=...)``.
"""

import logging
import sys

import structlog

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with key=value rendering."""
    global _configured

    log_level = getattr(logging, str(level).upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str):
    """Return a structlog logger bound to ``name``."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)
