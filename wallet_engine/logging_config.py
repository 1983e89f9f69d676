"""
Structured logging for the wallet engine using structlog.

The engine itself only logs through ``logging.getLogger(__name__)``; this
module is what turns those records into JSON lines or console output. An
embedding application either calls ``setup_logging`` at startup or passes
``configure_logging=True`` to ``WalletEngine.from_settings``. With
``root=False`` only the ``wallet_engine`` logger tree is touched, leaving the
host's own logging setup alone.
"""

import logging
import sys
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, TextIO

import structlog

from .config import settings

PACKAGE_LOGGER = "wallet_engine"


def _plain_values(_logger: Any, _method: str, event_dict: dict) -> dict:
    """Amounts and status enums as plain strings so JSON output stays exact."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
        elif isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def setup_logging(
    log_level: Optional[str] = None,
    *,
    json_logs: Optional[bool] = None,
    root: bool = True,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure structlog and route stdlib records through its formatter.

    Args:
        log_level: Override log level (default: settings.log_level)
        json_logs: Force JSON (True) or console (False) rendering
            (default: settings.log_json, else JSON unless DEBUG)
        root: Install the handler on the root logger; when False only the
            ``wallet_engine`` loggers get it and stop propagating
        stream: Output stream (default: stdout)

    Returns:
        The logger the handler was installed on.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = settings.log_json
    if json_logs is None:
        json_logs = level != logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _plain_values,
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

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
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    target = logging.getLogger() if root else logging.getLogger(PACKAGE_LOGGER)
    target.handlers.clear()
    target.addHandler(handler)
    target.setLevel(level)
    if not root:
        target.propagate = False

    # RPC and provider polling would otherwise log every request
    for name in ("httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return target
