"""
Error handling system for asm-inspector.

Provides structured error contexts, error callbacks and the domain exceptions
shared by the version, index and resolver modules.
"""

import logging
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class VersionParseError(ValueError):
    """Raised when a string is not a valid 4-component numeric version."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid version '{raw}': {reason}")


class ResolutionInvariantError(RuntimeError):
    """Raised when already-validated data turns out inconsistent during resolution."""


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    PARSING = "PARSING"
    FILESYSTEM = "FILESYSTEM"
    CONFIGURATION = "CONFIGURATION"
    VALIDATION = "VALIDATION"
    RESOLUTION = "RESOLUTION"


_LEVEL_MAP = {
    ErrorLevel.DEBUG: logging.DEBUG,
    ErrorLevel.INFO: logging.INFO,
    ErrorLevel.WARNING: logging.WARNING,
    ErrorLevel.ERROR: logging.ERROR,
    ErrorLevel.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Logs every error context, keeps per-category statistics and dispatches
    registered callbacks.
    """

    def __init__(
        self,
        logger_name: str = "asm_inspector",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        """
        Initialize error handler.

        Args:
            logger_name: Name for the logger
            log_level: Logging level
            enable_callbacks: Whether to enable error callbacks
        """
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(log_level)
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self.logger.addHandler(handler)

        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=(
                "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
                if exception
                else None
            ),
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        log_data = {
            "category": category.value,
            "module": module,
            "function": function,
            "details": context.details,
        }
        if exception:
            log_data["exception"] = type(exception).__name__
        self.logger.log(_LEVEL_MAP[level], f"{message} | {log_data}")

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []):
                try:
                    callback(context)
                except Exception as cb_error:
                    # Callback failures must not break the analysis
                    self.logger.error(f"Error in callback: {cb_error}")

            for callback in self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    self.logger.error(f"Error in global callback: {cb_error}")

        return context

    def warning(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "asm_inspector",
) -> ErrorHandler:
    """
    Setup global error handling configuration.

    Returns:
        ErrorHandler: Configured error handler
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def log_ingestion_error(
    message: str,
    module_name: str,
    dependency_name: str,
    raw_version: Optional[str] = None,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    """
    Report a dependency entry that could not be ingested.

    Args:
        message: Error message
        module_name: Module that declared the dependency
        dependency_name: Name of the offending dependency
        raw_version: Version text as read from metadata
        exception: Optional exception
    """
    details = {"module_name": module_name, "dependency_name": dependency_name}
    if raw_version is not None:
        details["raw_version"] = raw_version

    return get_error_handler().warning(
        ErrorCategory.PARSING,
        message,
        "index",
        "build_index",
        details=details,
        exception=exception,
        suggestions=["Rebuild the module or check its assembly references"],
    )


def log_module_load_error(
    message: str,
    file_path: str,
    exception: Optional[Exception] = None,
) -> ErrorContext:
    """
    Report a module file that could not be loaded.

    Args:
        message: Error message
        file_path: File being read
        exception: Optional exception
    """
    return get_error_handler().warning(
        ErrorCategory.FILESYSTEM,
        message,
        "reader",
        "read_module",
        details={"file_path": str(file_path), "file_name": Path(file_path).name},
        exception=exception,
        suggestions=[
            "Check the file is a managed .NET assembly",
            "Verify file is not corrupted",
        ],
    )
