"""reportgrid - Widget state, layout auto-sizing and persistence for audit report views."""

__version__ = "0.1.0"

from .models import (
    CrossFilter,
    DashboardConfig,
    SyncStatus,
    Widget,
    WidgetLayout,
    WidgetSnapshot,
    WidgetType,
)
from .autosize import AutoGridItemHeight, RowHeightTracker, rows_for_height
from .cache import DataCache, WidgetCache
from .dashboard_configs import DashboardConfigStore
from .widget_manager import WidgetManager
from .services import create_widget_manager

__all__ = [
    "CrossFilter",
    "DashboardConfig",
    "SyncStatus",
    "Widget",
    "WidgetLayout",
    "WidgetSnapshot",
    "WidgetType",
    "AutoGridItemHeight",
    "RowHeightTracker",
    "rows_for_height",
    "DataCache",
    "WidgetCache",
    "DashboardConfigStore",
    "WidgetManager",
    "create_widget_manager",
]
