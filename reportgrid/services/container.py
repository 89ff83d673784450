"""Service container for dependency injection.

Provides centralized service registration and resolution.
Supports both singleton and transient lifetimes.
"""
import logging
import threading
from typing import Any, Callable, Dict, Optional, Type

from ..cache import DataCache, WidgetCache
from ..utils.config import SETTINGS, Settings
from ..utils.threading import Scheduler, ThreadingScheduler, WorkerPool
from .implementations import LocalSnapshotStore, RestSnapshotStore, WidgetPersistence
from .interfaces import SnapshotStoreInterface

log = logging.getLogger(__name__)


class RemoteSnapshotStore(SnapshotStoreInterface):
    """Registration key for the optional remote store."""


class ServiceContainer:
    """
    Dependency injection container for managing service instances.

    Each instance has its own registrations, avoiding class-level mutable
    state that leaks between tests.

    Supports:
    - Singleton services (one instance shared)
    - Transient services (new instance per request)
    - Factory functions for deferred initialization
    """

    def __init__(self):
        self._services: Dict[Type, Any] = {}
        self._factories: Dict[Type, Callable[[], Any]] = {}
        self._singletons: Dict[Type, Any] = {}
        self._lock = threading.RLock()

    def register(
        self,
        interface: Type,
        implementation: Callable[[], Any],
        singleton: bool = True
    ) -> None:
        """
        Register a service implementation.

        Args:
            interface: The abstract interface type
            implementation: Concrete class or zero-argument callable
            singleton: If True, reuse same instance (default)
        """
        if singleton:
            self._services[interface] = implementation
        else:
            self._factories[interface] = implementation
        log.debug(f"Registered {getattr(implementation, '__name__', implementation)} for {interface.__name__}")

    def register_instance(self, interface: Type, instance: Any) -> None:
        """Register a pre-created service instance."""
        self._singletons[interface] = instance
        log.debug(f"Registered instance for {interface.__name__}")

    def register_factory(self, interface: Type, factory: Callable[[], Any]) -> None:
        """Register a factory creating a new service on each resolve."""
        self._factories[interface] = factory
        log.debug(f"Registered factory for {interface.__name__}")

    def resolve(self, interface: Type) -> Any:
        """
        Resolve a service by its interface.

        Raises:
            KeyError: If service not registered
        """
        if interface in self._singletons:
            return self._singletons[interface]

        with self._lock:
            if interface in self._singletons:
                return self._singletons[interface]
            if interface in self._services:
                self._singletons[interface] = self._services[interface]()
                return self._singletons[interface]

        if interface in self._factories:
            return self._factories[interface]()

        raise KeyError(f"No service registered for {interface.__name__}")

    def resolve_optional(self, interface: Type) -> Optional[Any]:
        return self.resolve(interface) if self.is_registered(interface) else None

    def get_snapshot_store(self) -> SnapshotStoreInterface:
        """Get the registered local snapshot store."""
        return self.resolve(SnapshotStoreInterface)

    def get_remote_store(self) -> Optional[SnapshotStoreInterface]:
        """Get the remote snapshot store, or None when replication is off."""
        return self.resolve_optional(RemoteSnapshotStore)

    def resolved(self, interface: Type) -> Optional[Any]:
        """Return the singleton for an interface only if it was already created."""
        return self._singletons.get(interface)

    def is_registered(self, interface: Type) -> bool:
        return (
            interface in self._services or
            interface in self._factories or
            interface in self._singletons
        )

    def reset(self) -> None:
        """Clear all registrations (useful for testing)."""
        self._services.clear()
        self._factories.clear()
        self._singletons.clear()


def register_default_services(
    container: ServiceContainer,
    settings: Optional[Settings] = None
) -> ServiceContainer:
    """
    Wire the production services into a container.

    Registers the local snapshot store, the remote store when ``REMOTE_URL``
    is set, the replication worker pool, the timer scheduler and the widget
    cache, whose expiry sweep runs on that scheduler.
    """
    settings = settings or SETTINGS
    container.register_instance(Settings, settings)
    container.register(SnapshotStoreInterface, lambda: LocalSnapshotStore(settings.snapshot_dir))
    if settings.remote_enabled:
        container.register(RemoteSnapshotStore, lambda: RestSnapshotStore.from_settings(settings))
    container.register(WorkerPool, lambda: WorkerPool(max_workers=settings.sync_workers))
    container.register(Scheduler, ThreadingScheduler)

    def widget_cache() -> WidgetCache:
        cache = WidgetCache(DataCache(settings.cache_max_size, settings.cache_default_ttl_seconds))
        cache.start_sweeper(container.resolve(Scheduler), settings.cache_sweep_interval_seconds)
        return cache

    container.register(WidgetCache, widget_cache)
    return container


def shutdown_services(container: ServiceContainer) -> None:
    """
    Release background resources of services the container has created.

    Stops the cache sweeper, cancels outstanding timers and drains the
    replication pool. Services never resolved are left alone.
    """
    cache = container.resolved(WidgetCache)
    if cache is not None:
        cache.stop_sweeper()
    pool = container.resolved(WorkerPool)
    if pool is not None:
        pool.shutdown(wait=True)
    scheduler = container.resolved(Scheduler)
    if isinstance(scheduler, ThreadingScheduler):
        scheduler.shutdown()
    log.debug("Default services shut down")


# Global default container instance
_default_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get the default container, wiring default services on first use."""
    global _default_container
    if _default_container is None:
        _default_container = register_default_services(ServiceContainer())
    return _default_container


def reset_container() -> None:
    """Reset the default container (for testing)."""
    global _default_container
    _default_container = None


def create_widget_manager(
    client_id: str,
    fiscal_year: int,
    container: Optional[ServiceContainer] = None,
    **kwargs
):
    """
    Build a WidgetManager for one report view scope.

    Args:
        client_id: Client identifier
        fiscal_year: Fiscal year
        container: Service container (default: global container)
        **kwargs: Extra WidgetManager arguments

    Returns:
        A new WidgetManager; the caller owns it and must close() it
    """
    from ..widget_manager import WidgetManager

    container = container or get_container()
    settings = container.resolve_optional(Settings) or SETTINGS
    persistence = WidgetPersistence(
        client_id,
        fiscal_year,
        local=container.resolve(SnapshotStoreInterface),
        remote=container.resolve_optional(RemoteSnapshotStore),
        pool=container.resolve_optional(WorkerPool)
    )
    kwargs.setdefault("widget_cache", container.resolve_optional(WidgetCache))
    kwargs.setdefault("scheduler", container.resolve_optional(Scheduler))
    kwargs.setdefault("settings", settings)
    return WidgetManager(client_id, fiscal_year, persistence, **kwargs)
