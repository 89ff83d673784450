"""
Core utilities for the reportgrid package.

This module contains shared utility functions and classes:
- config: Application configuration management
- logging: Rich console logging setup
- exceptions: Custom exception classes
- validation: Widget, layout and scope validation
- fsio: Atomic JSON file operations
- threading: Timers, debouncing and the replication worker pool
"""

# Re-export commonly used utilities for convenience
from .config import SETTINGS, Settings
from .logging import setup_logging
from .exceptions import (
    ReportGridError,
    ValidationError,
    WidgetValidationError,
    PersistenceError,
    RemoteStoreError,
    ConfigurationError,
    ConfigurationNotFoundError,
    MeasurementError,
)
from .threading import (
    Debouncer,
    Scheduler,
    ThreadingScheduler,
    TimerHandle,
    WorkerPool,
    get_worker_pool,
)

__all__ = [
    "SETTINGS",
    "Settings",
    "setup_logging",
    "ReportGridError",
    "ValidationError",
    "WidgetValidationError",
    "PersistenceError",
    "RemoteStoreError",
    "ConfigurationError",
    "ConfigurationNotFoundError",
    "MeasurementError",
    "Debouncer",
    "Scheduler",
    "ThreadingScheduler",
    "TimerHandle",
    "WorkerPool",
    "get_worker_pool",
]
