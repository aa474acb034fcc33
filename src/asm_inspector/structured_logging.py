"""
Structured logging configuration for asm-inspector.

Emits machine-readable JSON log lines on stderr so that report output on
stdout stays clean.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "message",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class AnalysisLogger:
    """Structured logger for analysis events."""

    def __init__(self, name: str = "asm_inspector"):
        self.logger = logging.getLogger(name)
        self._setup_logger()
        self.analysis_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def set_analysis_context(
        self,
        analysis_id: Optional[str] = None,
        directory: Optional[str] = None,
    ) -> None:
        """Set analysis context for logging."""
        self.analysis_context = {}
        if analysis_id:
            self.analysis_context["analysis_id"] = analysis_id
        if directory:
            self.analysis_context["directory"] = directory

    def clear_analysis_context(self) -> None:
        self.analysis_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.analysis_context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_analysis_logger = AnalysisLogger("asm_inspector.analysis")
_reader_logger = AnalysisLogger("asm_inspector.reader")

_ALL_LOGGERS = (_analysis_logger, _reader_logger)


def get_analysis_logger() -> AnalysisLogger:
    """Get index/resolution events logger."""
    return _analysis_logger


def log_analysis_start(analysis_id: str, directory: str, module_file_count: int) -> None:
    """Log analysis start event."""
    set_analysis_context(analysis_id, directory)
    _analysis_logger.info(
        "analysis_started",
        module_file_count=module_file_count,
    )


def log_module_skipped(file_path: str, reason: str, detail: Optional[str] = None) -> None:
    """Log a module file that was not analysed."""
    log_data = {"file_path": file_path, "reason": reason}
    if detail:
        log_data["detail"] = detail
    _reader_logger.info("module_skipped", **log_data)


def log_analysis_complete(
    analysis_id: str,
    duration_ms: int,
    module_count: int,
    group_count: int,
    conflict_count: int,
    ingestion_error_count: int = 0,
) -> None:
    """Log analysis completion event."""
    _analysis_logger.info(
        "analysis_completed",
        duration_ms=duration_ms,
        module_count=module_count,
        reported_groups=group_count,
        conflicts=conflict_count,
        ingestion_errors=ingestion_error_count,
    )
    clear_analysis_context()


def set_analysis_context(
    analysis_id: Optional[str] = None, directory: Optional[str] = None
) -> None:
    """Set context for all loggers."""
    for logger in _ALL_LOGGERS:
        logger.set_analysis_context(analysis_id, directory)


def clear_analysis_context() -> None:
    for logger in _ALL_LOGGERS:
        logger.clear_analysis_context()


def configure_logging(
    log_level: str = "WARNING",
    enable_json: bool = True,
    log_format: str = DEFAULT_LOG_FORMAT,
) -> None:
    """
    Set the level and line format of every asm-inspector logger.

    With ``enable_json`` off, events are written as plain text using
    ``log_format``; the event fields are still attached to each record.
    """
    level = getattr(logging, log_level.upper(), logging.WARNING)
    formatter = StructuredFormatter() if enable_json else logging.Formatter(log_format)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
        for handler in logger.logger.handlers:
            handler.setFormatter(formatter)
