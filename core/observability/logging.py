"""
Structured Logging with Correlation IDs

Provides logging utilities that automatically include:
- session_id: Links logs to a reconciliation session
- quote_id: Links logs to the supplier quote record being imported
- component_index: Links logs to a single extracted candidate
- stage: Pipeline stage (extracting, matching, importing, ...)

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(session_id="sess-001", stage="matching"):
        logger.info("Matching candidates")  # Automatically includes correlation IDs
"""

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from contextlib import contextmanager


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass
class CorrelationContext:
    """Context for correlating logs across an import run."""
    session_id: Optional[str] = None
    quote_id: Optional[str] = None
    component_index: Optional[int] = None
    file_name: Optional[str] = None
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Create a new context with merged values."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


# Context variable for async/thread-safe correlation
_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Context manager to set correlation IDs for logging.

    Usage:
        with with_correlation(session_id="sess-001", quote_id="q-42"):
            logger.info("Importing")  # Will include session_id and quote_id
    """
    old_ctx = get_correlation_context()
    new_ctx = old_ctx.merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Structured JSON Formatter
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that includes correlation context.

    Output format:
    {
        "timestamp": "2025-01-09T12:00:00.000Z",
        "level": "INFO",
        "logger": "component_matcher.matcher",
        "message": "Fuzzy match found",
        "session_id": "sess-001",
        "component_index": 3,
        "confidence": 0.93
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = get_correlation_context()
        log_data.update(ctx.to_dict())

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter that includes key correlation IDs.

    Output format:
    2025-01-09 12:00:00 [INFO ] component_matcher.matcher [sess-001/q:42/#3 matching]: Fuzzy match found
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()

        correlation_parts = []
        if ctx.session_id:
            sess_short = ctx.session_id[:12] if len(ctx.session_id) > 12 else ctx.session_id
            correlation_parts.append(sess_short)
        if ctx.quote_id:
            correlation_parts.append(f"q:{ctx.quote_id}")
        if ctx.component_index is not None:
            correlation_parts.append(f"#{ctx.component_index}")

        correlation = "/".join(correlation_parts) if correlation_parts else "-"
        if ctx.stage:
            correlation = f"{correlation} {ctx.stage}"

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger:
    """
    Logger wrapper that automatically includes correlation context.

    Also supports adding extra fields to individual log calls.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _log(self, level: int, msg: str, *args, **kwargs):
        """Log with extra fields support."""
        extra_fields = kwargs.pop("extra_fields", {})
        exc_info = kwargs.pop("exc_info", None)
        if exc_info is True:
            exc_info = sys.exc_info()

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "(unknown file)",
            0,
            msg,
            args,
            exc_info,
        )
        record.extra_fields = extra_fields

        self._logger.handle(record)

    def debug(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.DEBUG):
            self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.INFO):
            self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.WARNING):
            self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.ERROR):
            self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.error(msg, *args, **kwargs)

    # Delegate other methods
    def setLevel(self, level):
        self._logger.setLevel(level)

    def isEnabledFor(self, level):
        return self._logger.isEnabledFor(level)


# =============================================================================
# Logger Factory
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_handler: Optional[logging.Handler] = None

_PACKAGE_LOGGERS = (
    "component_matcher",
    "component_library",
    "reconciliation",
    "library_import",
    "extraction",
    "pricing",
    "core",
)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
):
    """
    Configure logging for the application.

    Loggers created before this call pick up the new level and format; a
    second call replaces the handler installed by the first.

    Args:
        level: Logging level, as a number or a name such as "DEBUG"
        json_format: If True, use JSON format; otherwise human-readable
    """
    global _handler

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stdout)
    _handler.setLevel(level)
    _handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root.setLevel(level)
    root.addHandler(_handler)

    for logger_name in _PACKAGE_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)

    # Reduce noise from third-party libraries
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> CorrelatedLogger:
    """
    Get a correlated logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        CorrelatedLogger instance
    """
    if name not in _loggers:
        if _handler is None:
            configure_logging()
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))

    return _loggers[name]


# =============================================================================
# Convenience Functions for Pipeline Stages
# =============================================================================

def log_stage_start(stage: str, **kwargs):
    """Log stage start with correlation."""
    logger = get_logger(f"library_import.{stage}")
    logger.info(f"Stage started: {stage}", extra_fields=kwargs)


def log_stage_complete(stage: str, duration_ms: float = None, **kwargs):
    """Log stage completion with correlation."""
    logger = get_logger(f"library_import.{stage}")
    extra = {"duration_ms": duration_ms} if duration_ms else {}
    extra.update(kwargs)
    logger.info(f"Stage completed: {stage}", extra_fields=extra)


def log_stage_error(stage: str, error: str, **kwargs):
    """Log stage error with correlation."""
    logger = get_logger(f"library_import.{stage}")
    logger.error(f"Stage failed: {stage} - {error}", extra_fields=kwargs)
