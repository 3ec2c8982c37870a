"""
Structured Logging with Correlation IDs

Every record logged inside a ``with_correlation(...)`` block carries the
delivery context it was emitted in:
- cycle_id: one delivery cycle
- document_id / document_number: one ERP document inside that cycle
- job: the scheduled job (delivery, report, retention)
- session_state: transport session state, when the caller knows it

The context lives in a ContextVar, so concurrent tasks (heartbeat, cycle,
dashboard requests) never see each other's ids. ``CorrelationFilter`` copies
the context onto the record when it is created, so a record formatted later
still shows where it came from.

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(cycle_id="cycle-1a2b3c4d", document_number="14936"):
        logger.info("Document delivered", extra_fields={"message_id": "..."})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    """Ids that tie a log line to a cycle, a document or a job."""
    cycle_id: Optional[str] = None
    document_id: Optional[str] = None
    document_number: Optional[str] = None
    job: Optional[str] = None
    session_state: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        known = {f.name for f in fields(self)}
        unknown = set(kwargs) - known
        if unknown:
            raise TypeError(f"Unknown correlation field(s): {', '.join(sorted(unknown))}")
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)

    def short(self) -> str:
        """Compact prefix for human-readable lines: ``cycle-1a2b/delivery/doc:14936``."""
        parts = []
        if self.cycle_id:
            parts.append(self.cycle_id)
        if self.job and not self.cycle_id:
            parts.append(self.job)
        if self.document_number:
            parts.append(f"doc:{self.document_number}")
        if self.session_state:
            parts.append(f"session:{self.session_state}")
        return "/".join(parts) or "-"


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext(),
)


def get_correlation_context() -> CorrelationContext:
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs) -> Iterator[CorrelationContext]:
    """Add correlation ids for the duration of the block.

    Blocks nest: inner ids are added to the outer ones and removed again on
    exit. ``None`` values leave the outer value in place.
    """
    token = _correlation_context.set(get_correlation_context().merge(**kwargs))
    try:
        yield _correlation_context.get()
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Record enrichment
# =============================================================================

class CorrelationFilter(logging.Filter):
    """Stamps the current correlation context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation"):
            record.correlation = get_correlation_context()
        return True


def _record_context(record: logging.LogRecord) -> CorrelationContext:
    ctx = getattr(record, "correlation", None)
    return ctx if isinstance(ctx, CorrelationContext) else get_correlation_context()


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line, for log shippers.

    {"timestamp": "2025-10-01T12:50:03.120Z", "level": "INFO",
     "logger": "delivery.orchestrator", "message": "Document 14936 delivered",
     "cycle_id": "cycle-1a2b3c4d", "document_number": "14936"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _record_time(record).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_record_context(record).to_dict())

        extra = getattr(record, "extra_fields", None)
        if extra:
            entry.update(extra)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """
    Console lines with the correlation prefix in brackets.

    2025-10-01 12:50:03 [INFO ] delivery.orchestrator [cycle-1a2b3c4d/doc:14936]: Document 14936 delivered
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _record_time(record).astimezone().strftime("%Y-%m-%d %H:%M:%S")
        line = (
            f"{timestamp} [{record.levelname:5}] {record.name} "
            f"[{_record_context(record).short()}]: {record.getMessage()}"
        )

        extra = getattr(record, "extra_fields", None)
        if extra:
            line += " " + " ".join(f"{k}={v}" for k, v in extra.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


# =============================================================================
# Logger with extra-field support
# =============================================================================

class CorrelatedLogger:
    """
    Thin wrapper over ``logging.Logger`` accepting ``extra_fields=`` on every
    call. The fields end up as top-level keys in JSON output and as
    ``key=value`` pairs on console lines.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, args, exc_info=None, extra_fields: Optional[Dict[str, Any]] = None):
        self._logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            extra={"extra_fields": extra_fields or {}},
            stacklevel=3,
        )

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, args, **kwargs)

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)


# =============================================================================
# Setup
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_handler: Optional[logging.Handler] = None

# Package loggers raised or lowered together with the root level
SERVICE_LOGGERS = ("api", "alerts", "connectors", "core", "delivery", "session", "transport", "workers")

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "uvicorn.access", "httpx")


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
    stream=None,
) -> logging.Handler:
    """
    Install one handler on the root logger.

    Calling it again replaces the previously installed handler, so the worker
    and scripts can reconfigure after reading their settings.

    Args:
        level: Level number or name ("DEBUG", "INFO", ...)
        json_format: JSON lines instead of console lines
        stream: Output stream (stdout by default)
    """
    global _handler

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationFilter())
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler

    for name in SERVICE_LOGGERS:
        logging.getLogger(name).setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler


def get_logger(name: str) -> CorrelatedLogger:
    """Correlated logger for ``name`` (usually ``__name__``), cached per name."""
    if name not in _loggers:
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
