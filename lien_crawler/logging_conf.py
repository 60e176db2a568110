"""Structured logging for the crawler plus the database-backed system log."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Iterable, Protocol

import structlog

from .models import LogLevel, SystemLogEntry

_LOGGING_INITIALISED = False
_ROOT_LOGGER = "lien_crawler"
_JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"

_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.stdlib.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
]


def _default_log_dir() -> Path:
    home = os.environ.get("LIEN_CRAWLER_HOME")
    base = Path(home).expanduser().resolve() if home else Path(__file__).resolve().parents[1]
    return base / "logs"


def _json_file(path: Path, level: str) -> dict[str, Any]:
    return {
        "class": "logging.FileHandler",
        "filename": str(path),
        "encoding": "utf-8",
        "level": level,
        "formatter": "json",
    }


def _dict_config(log_dir: Path, level: str) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": _JSON_FIELDS},
        },
        "handlers": {
            "stderr": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "crawler": _json_file(log_dir / "crawler.log", "INFO"),
            "errors": _json_file(log_dir / "error.log", "ERROR"),
        },
        "loggers": {
            _ROOT_LOGGER: {
                "handlers": ["stderr", "crawler", "errors"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install JSON handlers for the ``lien_crawler`` tree once per process.

    Events go to stderr, ``logs/crawler.log`` and (errors only)
    ``logs/error.log``; per-jurisdiction files are added lazily by
    :func:`jurisdiction_logger`.
    """

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    (log_dir / "jurisdictions").mkdir(parents=True, exist_ok=True)
    if not _LOGGING_INITIALISED:
        logging.config.dictConfig(_dict_config(log_dir, "DEBUG" if verbose else "INFO"))
        structlog.configure(
            processors=_PROCESSORS,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(_ROOT_LOGGER)


def jurisdiction_logger(jurisdiction_id: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to one jurisdiction, with its own log file."""

    configure_logging(verbose)
    log_path = _default_log_dir() / "jurisdictions" / f"{jurisdiction_id}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"{_ROOT_LOGGER}.jurisdiction.{jurisdiction_id}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        root = logging.getLogger(_ROOT_LOGGER)
        if root.handlers:
            file_handler.setFormatter(root.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(jurisdiction=jurisdiction_id)


class LogSink(Protocol):
    def append_log(self, entry: SystemLogEntry) -> None:
        """Persist one system log entry."""


class SystemLog:
    """Component logger that mirrors every event into the system log table.

    Structured output goes through structlog as usual; the same message is
    appended as a ``SystemLogEntry`` so operators can read run history from
    the database.
    """

    _STRUCTLOG_METHOD = {
        LogLevel.INFO: "info",
        LogLevel.SUCCESS: "info",
        LogLevel.WARNING: "warning",
        LogLevel.ERROR: "error",
    }

    def __init__(
        self,
        sink: LogSink | None,
        component: str,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.sink = sink
        self.component = component
        self.logger = (logger or structlog.get_logger(_ROOT_LOGGER)).bind(component=component)

    def info(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.INFO, message, **fields)

    def success(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.SUCCESS, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.ERROR, message, **fields)

    def log(self, level: LogLevel, message: str, **fields: Any) -> None:
        method = getattr(self.logger, self._STRUCTLOG_METHOD[level])
        method(message, level_name=level.value, **fields)
        if self.sink is None:
            return
        entry = SystemLogEntry(
            level=level,
            component=self.component,
            message=message,
            metadata={key: _jsonable(value) for key, value in fields.items()},
        )
        try:
            self.sink.append_log(entry)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("system_log_write_failed", error=str(exc), message=message)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_jurisdiction_logs() -> Iterable[Path]:
    """Yield available per-jurisdiction log file paths."""

    directory = _default_log_dir() / "jurisdictions"
    if not directory.exists():
        return []
    return sorted(p for p in directory.glob("*.log"))


__all__ = [
    "LogSink",
    "SystemLog",
    "available_jurisdiction_logs",
    "configure_logging",
    "jurisdiction_logger",
    "tail_log",
]
