"""
Centralized exception hierarchy and error handling patterns.
Provides consistent error handling across the report grid.
"""
import logging
import re
from typing import Optional, Any, Dict

__all__ = [
    'ReportGridError', 'ValidationError', 'WidgetValidationError',
    'PersistenceError', 'RemoteStoreError', 'ConfigurationError',
    'ConfigurationNotFoundError', 'MeasurementError',
    'sanitize_error_message', 'sanitize_log_message', 'log_and_reraise',
    'log_suppressed', 'ErrorContext'
]


class ReportGridError(Exception):
    """
    Base exception for all report grid errors.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            details: Optional additional context
            cause: Optional underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None
        }


class ValidationError(ReportGridError):
    """Raised when input validation fails."""
    pass


class WidgetValidationError(ValidationError):
    """Raised when a widget, layout or update payload is malformed."""
    pass


class PersistenceError(ReportGridError):
    """Raised when reading or writing a snapshot fails."""
    pass


class RemoteStoreError(PersistenceError):
    """Raised when the remote store rejects or cannot be reached."""
    pass


class ConfigurationError(ReportGridError):
    """Raised when configuration is invalid."""
    pass


class ConfigurationNotFoundError(ConfigurationError):
    """Raised when a saved dashboard configuration does not exist."""
    pass


class MeasurementError(ReportGridError):
    """Raised by content measurement callbacks that cannot report a height."""
    pass


_KEY_PATTERNS = [
    (re.compile(r'eyJ[a-zA-Z0-9_\-]{10,}\.[a-zA-Z0-9_\-]{10,}\.[a-zA-Z0-9_\-]+'), 'eyJ***MASKED***'),
    (re.compile(r'(apikey["\']?\s*[:=]\s*["\']?)[^\s"\',]+', re.IGNORECASE), r'\1***MASKED***'),
    (re.compile(r'(Bearer\s+)[^\s"\',]+'), r'\1***MASKED***'),
]


def sanitize_error_message(message: str) -> str:
    """
    Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message
    """
    # Replace full paths with just filenames
    path_patterns = [
        r'[A-Za-z]:\\[^:\n]*\\([^\\:\n]+)',  # Windows paths
        r'(?<![:/\w])/[^:\s]*/([^/:\s]+)',   # Unix paths
    ]

    sanitized = message
    for pattern in path_patterns:
        sanitized = re.sub(pattern, r'<path>/\1', sanitized)

    for pattern, replacement in _KEY_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)

    return sanitized


def sanitize_log_message(message: str) -> str:
    """
    Neutralize log injection and mask credentials in a log message.

    Args:
        message: Raw log message

    Returns:
        Message with CR/LF escaped, control characters removed and keys masked
    """
    cleaned = message.replace('\r', '\\r').replace('\n', '\\n')
    cleaned = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', cleaned)
    for pattern, replacement in _KEY_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned


def log_and_reraise(
    logger: logging.Logger,
    error: Exception,
    operation: str,
    error_type: type = ReportGridError
) -> None:
    """
    Log an error and re-raise it as a specific type.

    Args:
        logger: Logger instance
        error: Original exception
        operation: Description of failed operation
        error_type: Type of exception to raise

    Raises:
        Exception of specified type
    """
    message = f"Failed to {operation}: {str(error)}"

    logger.error(
        sanitize_error_message(message),
        extra={
            "operation": operation,
            "original_error": str(error),
            "error_type": error.__class__.__name__
        }
    )

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Full traceback:", exc_info=error)

    if isinstance(error, error_type):
        raise error
    if issubclass(error_type, ReportGridError):
        raise error_type(message, cause=error) from error
    raise error_type(message) from error


def log_suppressed(
    logger: logging.Logger,
    error: Exception,
    operation: str,
    log_level: int = logging.WARNING
) -> ReportGridError:
    """
    Log an error on a best-effort channel without raising it.

    Args:
        logger: Logger instance
        error: The exception that occurred
        operation: Description of the operation that failed
        log_level: Logging level to use

    Returns:
        The error converted to a ReportGridError
    """
    if isinstance(error, ReportGridError):
        converted = error
    else:
        converted = PersistenceError(f"Failed to {operation}: {error}", cause=error)

    logger.log(
        log_level,
        "Operation failed: %s - %s",
        operation,
        sanitize_error_message(converted.message),
        extra={
            "error_type": converted.__class__.__name__,
            "error_code": converted.error_code,
        }
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Full traceback:", exc_info=error)
    return converted


class ErrorContext:
    """
    Context manager for handling errors in a specific operation.
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        reraise_as: Optional[type] = None
    ):
        """
        Initialize error context.

        Args:
            operation: Description of the operation
            logger: Logger instance
            reraise_as: Optional exception type to convert to
        """
        self.operation = operation
        self.logger = logger
        self.reraise_as = reraise_as or ReportGridError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, Exception):
            log_and_reraise(self.logger, exc_val, self.operation, self.reraise_as)
        return False  # Don't suppress exceptions
