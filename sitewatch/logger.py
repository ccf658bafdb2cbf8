"""Logging setup and the sitewatch exception hierarchy.

``LOG_LEVEL`` picks the level for every sitewatch logger. Records emitted
through ``ContextLogger`` carry an ``extra_fields`` dict (component, cycle,
path, ...) which ``JSONFormatter`` merges into its output when
``SITEWATCH_LOG_JSON`` is on.
"""
import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_LEVEL = getattr(logging, _level_name, logging.INFO)
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stderr)])

_loggers: Dict[str, logging.Logger] = {}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields are flattened into it."""

    __slots__ = ()

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            payload["error"] = {
                "type": exc_type.__name__,
                "message": str(exc) if exc else None,
                "traceback": "".join(traceback.format_exception(exc_type, exc, tb)),
            }
        return json.dumps(payload, default=str)


def get_logger(name: str, json_format: bool = False) -> logging.Logger:
    """Return the named logger at ``LOG_LEVEL``; ``json_format`` gives it its own JSON handler."""
    key = f"{name}:{int(json_format)}"
    cached = _loggers.get(key)
    if cached is not None:
        return cached

    logger = logging.getLogger(name)
    logger.setLevel(LOG_LEVEL)
    if json_format and not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    _loggers[key] = logger
    return logger


class ContextLogger:
    """Wraps a logger and attaches fixed context fields to each record."""

    __slots__ = ("logger", "context")

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context

    def bind(self, **context) -> "ContextLogger":
        return ContextLogger(self.logger, **{**self.context, **context})

    def _emit(self, level: int, msg: str, exc_info: Any = None, fields: Optional[Dict[str, Any]] = None):
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(self.logger.name, level, "(sitewatch)", 0, msg, (), exc_info)
        record.extra_fields = {**self.context, **fields} if fields else dict(self.context)
        self.logger.handle(record)

    def debug(self, msg: str, **fields):
        self._emit(logging.DEBUG, msg, fields=fields)

    def info(self, msg: str, **fields):
        self._emit(logging.INFO, msg, fields=fields)

    def warning(self, msg: str, **fields):
        self._emit(logging.WARNING, msg, fields=fields)

    def error(self, msg: str, exc_info: Any = None, **fields):
        self._emit(logging.ERROR, msg, exc_info=exc_info, fields=fields)

    def exception(self, msg: str, **fields):
        self._emit(logging.ERROR, msg, exc_info=sys.exc_info(), fields=fields)

    def critical(self, msg: str, exc_info: Any = None, **fields):
        self._emit(logging.CRITICAL, msg, exc_info=exc_info, fields=fields)

    def isEnabledFor(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)


class SiteWatchError(Exception):
    """Base class; errors of this type are recoverable inside a watch cycle."""


class BuildError(SiteWatchError):
    """A build pass failed while rendering or writing."""


class FatalBuildError(SiteWatchError):
    """The session cannot build at all (bad target, no write pipeline)."""


class ConfigurationError(SiteWatchError):
    """Project configuration failed to load, reset, or was not found."""


class DependencyResolutionError(SiteWatchError):
    def __init__(self, path: str, cause: Optional[BaseException] = None):
        super().__init__(f"Could not resolve dependencies of {path}: {cause}")
        self.path = path
        self.cause = cause


class WatchError(SiteWatchError):
    """Watch-mode lifecycle misuse or a failed initial build."""


def log_and_reraise(logger, msg: str, exc: BaseException, **context):
    """Log ``msg`` with the active traceback and raise ``exc``. Call from an ``except`` block."""
    if isinstance(logger, ContextLogger):
        logger.exception(msg, **context)
    else:
        logger.exception(msg, extra={"extra_fields": context})
    raise exc


def safe_float(value: Any, default: float, logger: Optional[logging.Logger] = None, context: str = "") -> float:
    """Parse an env-style float; blank means ``default``, garbage is logged and means ``default``."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        if logger:
            logger.warning("Ignoring non-numeric %s=%r, using %s", context, value, default)
        return default


_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def safe_bool(value: Any, default: bool, logger: Optional[logging.Logger] = None, context: str = "") -> bool:
    """Parse an env-style flag (1/0, true/false, yes/no, on/off)."""
    if isinstance(value, bool):
        return value
    if value is None or not str(value).strip():
        return default
    token = str(value).strip().lower()
    if token in _TRUE:
        return True
    if token in _FALSE:
        return False
    if logger:
        logger.warning("Ignoring unrecognized boolean %s=%r, using %s", context, value, default)
    return default
