"""structlog configuration shared by the API server and client toolkit."""

from __future__ import annotations

import logging
from typing import Optional

import structlog

_CONFIGURED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for JSON output.

    Calling the function more than once is harmless; only the first call
    installs the processors.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    if level is None:
        from mentalspace.config import get_settings

        level = get_settings().log_level

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


__all__ = ["configure_logging"]
