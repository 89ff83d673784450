from rich.logging import RichHandler
import logging
import os
from contextvars import ContextVar
from pathlib import Path
from datetime import datetime
from typing import Optional

from .exceptions import sanitize_log_message

FILE_FORMAT = '%(asctime)s - [%(scope)s] %(name)s - %(levelname)s - %(message)s'

_current_scope: ContextVar[str] = ContextVar("reportgrid_log_scope", default="-")


def get_log_level() -> int:
    """Get logging level from environment or config."""
    # Import here to avoid circular imports
    try:
        from .config import SETTINGS
        level_str = SETTINGS.log_level.upper()
    except Exception:
        level_str = os.environ.get("LOG_LEVEL", "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(level_str, logging.INFO)


def is_production() -> bool:
    """Check if running in production environment."""
    try:
        from .config import SETTINGS
        return SETTINGS.environment.lower() == "production"
    except Exception:
        return os.environ.get("ENVIRONMENT", "development").lower() == "production"


def default_log_dir() -> Path:
    """Log files live next to the report data: ``<data_dir>/logs``."""
    from .config import SETTINGS
    return Path(SETTINGS.data_dir) / "logs"


def set_log_scope(client_id: Optional[str] = None, fiscal_year: Optional[str] = None) -> None:
    """
    Tag subsequent log records with the report scope being worked on.

    Calling with no arguments resets the tag.
    """
    if client_id is None:
        _current_scope.set("-")
    else:
        _current_scope.set(f"{client_id}/{fiscal_year}" if fiscal_year else client_id)


def get_log_scope() -> str:
    return _current_scope.get()


class ReportScopeFilter(logging.Filter):
    """Stamps each record with the active ``client/year`` scope."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "scope"):
            record.scope = _current_scope.get()
        return True
class SanitizingFormatter(logging.Formatter):
    """
    A logging formatter that sanitizes log messages to prevent log injection.

    Applies sanitization to the message content while preserving the format.
    """

    def format(self, record: logging.LogRecord) -> str:
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: sanitize_log_message(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(sanitize_log_message(str(arg)) for arg in record.args)
        return super().format(record)


def setup_logging(
    level: Optional[int] = None,
    log_file: bool = True,
    log_dir: Optional[Path] = None
) -> Optional[Path]:
    """
    Setup logging with environment-aware defaults.

    Args:
        level: Override log level. If None, uses environment config.
        log_file: Whether to create log file.
        log_dir: Directory for the log file (default: <data_dir>/logs)

    Returns:
        Path of the log file, or None when file logging is off
    """
    if level is None:
        level = get_log_level()

    # In production, reduce console verbosity
    console_level = logging.WARNING if is_production() else level

    handlers = [RichHandler(rich_tracebacks=True, level=console_level)]

    log_path = None
    if log_file:
        log_dir = Path(log_dir or default_log_dir())
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = log_dir / f"reportgrid_{timestamp}.log"
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.addFilter(ReportScopeFilter())
        file_handler.setFormatter(SanitizingFormatter(FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
    return log_path
