"""Logging setup.

structlog on top of stdlib logging, so library loggers (httpx, openai,
motor) and nutriscan's structured events share one output.
"""

import logging
import os
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None, json_output: bool = False) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Log level name (default: LOG_LEVEL env var, else INFO)
        json_output: Render JSON lines instead of the console format
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", level=numeric_level, force=True)
    # Keep chatty HTTP clients at WARNING unless debugging
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(
            numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
        )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
