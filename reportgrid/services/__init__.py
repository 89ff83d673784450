"""Service layer for persistence and dependency injection."""
from .interfaces import (
    SnapshotStoreInterface,
    WidgetPersistenceInterface,
)
from .implementations import (
    LocalSnapshotStore,
    RestSnapshotStore,
    WidgetPersistence,
)
from .container import (
    RemoteSnapshotStore,
    ServiceContainer,
    create_widget_manager,
    get_container,
    register_default_services,
    reset_container,
    shutdown_services,
)

__all__ = [
    "SnapshotStoreInterface",
    "WidgetPersistenceInterface",
    "LocalSnapshotStore",
    "RestSnapshotStore",
    "WidgetPersistence",
    "RemoteSnapshotStore",
    "ServiceContainer",
    "create_widget_manager",
    "get_container",
    "register_default_services",
    "reset_container",
    "shutdown_services",
]
