"""Structured JSON logging for the scanner, built on structlog."""

import logging
import sys
import time
from typing import Any, Dict, Optional

import structlog

from .config import settings

# Log event shared by every scan-cycle stage; filter on it with the cycle_id/stage keys.
CYCLE_EVENT = "Scan cycle"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or settings.LOG_LEVEL or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def configure_logging(level: Optional[str] = None):
    """
    Route structlog through stdlib logging as one JSON object per line on stdout.

    Args:
        level: Level name overriding LOG_LEVEL (e.g. from ``--log-level``)
    """
    numeric_level = _resolve_level(level)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    logging.getLogger().setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)


def _elapsed_ms(context: Dict[str, Any]) -> Optional[int]:
    started = context.get("start_time")
    if started is None:
        return None
    return int((time.time() - started) * 1000)


def _extra_fields(context: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in context.items() if k not in ("event", "start_time")}


class LoggerMixin:
    """Per-class structlog logger plus timed operation and scan-stage helpers."""

    @property
    def logger(self) -> structlog.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger

    def log_start(self, event: str, **kwargs: Any) -> Dict[str, Any]:
        """Open a timed operation; pass the returned context to log_success/log_error."""
        context = {"event": event, "start_time": time.time(), **kwargs}
        self.logger.debug(f"{event} started", **_extra_fields(context))
        return context

    def log_success(self, context: Dict[str, Any], **kwargs: Any):
        elapsed = _elapsed_ms(context)
        if elapsed is not None:
            kwargs["duration_ms"] = elapsed
        self.logger.info(f"{context.get('event', 'operation')} completed", **_extra_fields(context), **kwargs)

    def log_error(self, context: Dict[str, Any], error: Exception, **kwargs: Any):
        elapsed = _elapsed_ms(context)
        if elapsed is not None:
            kwargs["duration_ms"] = elapsed
        self.logger.error(
            f"{context.get('event', 'operation')} failed",
            **_extra_fields(context),
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        )

    def log_stage(self, cycle_id: int, stage: str, level: str = "debug", **kwargs: Any):
        """One scan-cycle progress line keyed by cycle_id and stage."""
        getattr(self.logger, level)(CYCLE_EVENT, cycle_id=cycle_id, stage=stage, **kwargs)
