"""
core/log.py: unified logging

Features:
• trace_id propagates through a ContextVar, no manual passing
• format: time [level] [trace_id] module.function:line - message
• get_logger(__name__) returns a named logger for any module
• set_trace_id / get_trace_id manage the request or delivery context
• trace_ctx() context manager for webhook deliveries and background jobs
• the root logger is configured once; module loggers inherit its handlers

Usage:
    from core.log import get_logger, trace_ctx
    logger = get_logger(__name__)
    logger.info("plain message")

    with trace_ctx(event_id) as tid:
        logger.info("event=webhook.receive | event_id=%s", event_id)
"""

import logging
import logging.handlers
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

import colorlog

from core.config import cfg

# ─── Trace ID ContextVar ──────────────────────────────────────────────────────
_trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")


def _new_trace_id() -> str:
    """8-char short uuid."""
    return uuid.uuid4().hex[:8]


def set_trace_id(tid: Optional[str] = None) -> str:
    """Set the trace id of the current context and return it."""
    tid = str(tid or "").strip()[:32] or _new_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> str:
    """Trace id of the current context ('-' when unset)."""
    return _trace_id_var.get()


@contextmanager
def trace_ctx(trace_id: Optional[str] = None) -> Generator[str, None, None]:
    """
    Scoped trace id, reset on exit.

        with trace_ctx(event.id) as tid:
            logger.info("event=webhook.receive | event_id=%s", event.id)
    """
    token = _trace_id_var.set(str(trace_id or "").strip()[:32] or _new_trace_id())
    try:
        yield _trace_id_var.get()
    finally:
        _trace_id_var.reset(token)


# ─── Log Level ────────────────────────────────────────────────────────────────
_LOG_LEVEL_STR = str(cfg.get("log.level", "INFO")).upper()
_LOG_FILE = cfg.get("log.file", "")

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}
_level = _LEVEL_MAP.get(_LOG_LEVEL_STR, logging.INFO)

_FMT = "%(asctime)s [%(levelname)-5s] [%(trace_id)s] %(name)s.%(funcName)s:%(lineno)d - %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"


class _TraceIdFilter(logging.Filter):
    """Injects trace_id into every record for %(trace_id)s."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get()
        return True


_trace_filter = _TraceIdFilter()

# handlers are tagged so uvicorn --reload does not stack duplicates
_APP_HANDLER_MARKER = "_is_app_log_handler"


def _setup_app_logging() -> None:
    """Attach handlers to the root logger (idempotent)."""
    root = logging.getLogger()
    if any(getattr(h, _APP_HANDLER_MARKER, False) for h in root.handlers):
        return

    root.setLevel(_level)

    ch = colorlog.StreamHandler(stream=sys.stdout)
    ch.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s" + _FMT,
            datefmt=_DATE_FMT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    ch.setLevel(_level)
    ch.addFilter(_trace_filter)
    setattr(ch, _APP_HANDLER_MARKER, True)
    root.addHandler(ch)

    if _LOG_FILE:
        fh = logging.handlers.RotatingFileHandler(
            f"{_LOG_FILE}.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=7,
            encoding="utf-8",
        )
        fh.setLevel(_level)
        fh.setFormatter(logging.Formatter(_FMT, datefmt=_DATE_FMT))
        fh.addFilter(_trace_filter)
        setattr(fh, _APP_HANDLER_MARKER, True)
        root.addHandler(fh)


_setup_app_logging()

logger = logging.getLogger(__name__)


def get_logger(name: str) -> logging.Logger:
    """
    Named logger, standard usage in every module:

        from core.log import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)
