"""
structlog setup shared by the CLI and library callers.

- configure_logging(): one-time processor chain setup, returns a run id
- get_logger(): named FilteringBoundLogger
"""

from __future__ import annotations

import logging
import os
import sys
from uuid import uuid4

import structlog
from structlog.contextvars import bind_contextvars
from structlog.typing import FilteringBoundLogger


_configured = False


def _stderr_logger(*args: object) -> structlog.PrintLogger:
    # stderr as of logger creation, not as of configure time
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(level: str | None = None, *, json: bool | None = None) -> str:
    """Configure structlog; returns the run id bound into the context."""
    global _configured

    level_name = (level or os.getenv("POP_NETRUNNER_LOG_LEVEL") or "INFO").upper()
    numeric = logging.getLevelName(level_name)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    if json is None:
        json = os.getenv("POP_NETRUNNER_LOG_JSON", "").strip().lower() in {"1", "true", "yes", "on"}

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
    _configured = True

    run_id = uuid4().hex[:12]
    bind_contextvars(run_id=run_id)
    return run_id


def get_logger(name: str) -> FilteringBoundLogger:
    if not _configured:
        configure_logging()
    return structlog.get_logger(name).bind(logger=name)
