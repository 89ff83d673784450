"""Service interfaces for dependency injection.

Abstract base classes defining the persistence contracts used by the
widget manager. Enables testability through mock implementations and
loose coupling to the remote store.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..models import SyncStatus, Widget, WidgetLayout, WidgetSnapshot
from ..utils.exceptions import ReportGridError


class SnapshotStoreInterface(ABC):
    """Interface for a key/value store of widget snapshots."""

    @abstractmethod
    def load(self, client_id: str, fiscal_year: int) -> Optional[WidgetSnapshot]:
        """Load the snapshot for a scope.

        Args:
            client_id: Client identifier
            fiscal_year: Fiscal year

        Returns:
            Stored snapshot, or None if the scope has never been saved
        """
        pass

    @abstractmethod
    def save(self, snapshot: WidgetSnapshot) -> None:
        """Store a snapshot, replacing any previous one for its scope.

        Args:
            snapshot: Snapshot to persist
        """
        pass

    @abstractmethod
    def clear(self, client_id: str, fiscal_year: int) -> None:
        """Delete the stored snapshot for a scope, if any."""
        pass


class WidgetPersistenceInterface(ABC):
    """Interface for the scoped persistence channel of one report view."""

    @abstractmethod
    def load(self) -> Optional[WidgetSnapshot]:
        """Load the persisted snapshot for the bound scope."""
        pass

    @abstractmethod
    def save(self, widgets: List[Widget], layouts: List[WidgetLayout]) -> None:
        """Persist the current widget set.

        Implementations must not raise on remote failures; those are
        reported through ``status`` and ``last_error``.
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove persisted state for the bound scope."""
        pass

    @property
    @abstractmethod
    def status(self) -> SyncStatus:
        """Replication state of the remote copy."""
        pass

    @property
    @abstractmethod
    def last_error(self) -> Optional[ReportGridError]:
        """Most recent persistence failure, if any."""
        pass

    @abstractmethod
    def add_status_listener(
        self,
        listener: Callable[[SyncStatus], None]
    ) -> Callable[[], None]:
        """Observe sync status transitions.

        Returns:
            Callable that removes the listener
        """
        pass

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until queued background work is done."""
        return True
