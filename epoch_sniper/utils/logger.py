"""
Structured Logging Configuration
=================================

structlog setup shared by the sniper and the claim job. Every event
carries the name of the process that emitted it, so both can log to
the same supervisor stream.
"""

import sys
import logging
import structlog
from typing import Optional

# Library loggers held at WARNING or above
QUIET_LOGGERS = ("websockets", "urllib3", "web3", "aiohttp")


def _add_process_name(name: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("process", name)
        return event_dict
    return processor


def _renderer(json_output: bool):
    if json_output:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    process: str = "sniper"
):
    """
    Configure structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: Emit one JSON object per line instead of console text
        process: Value of the `process` key on every event
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    timestamper = (
        structlog.processors.TimeStamper(fmt="iso", utc=True)
        if json_output
        else structlog.processors.TimeStamper(fmt="%H:%M:%S")
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _add_process_name(process),
            timestamper,
            structlog.processors.StackInfoRenderer(),
            *_renderer(json_output)
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    """structlog logger, optionally named after its module."""
    return structlog.get_logger(name)
