"""Concrete service implementations.

Local JSON snapshot store, PostgREST-backed remote store and the
write-ahead-then-sync persistence channel used by the widget manager.
"""
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log
)

from ..models import SyncStatus, Widget, WidgetLayout, WidgetSnapshot
from ..utils.config import SETTINGS, Settings
from ..utils.exceptions import (
    PersistenceError,
    RemoteStoreError,
    ReportGridError,
    log_suppressed,
    sanitize_error_message,
)
from ..utils.fsio import atomic_write_json, read_json, remove_file, safe_filename
from ..utils.threading import WorkerPool, get_worker_pool
from ..utils.validation import format_pydantic_errors, validate_scope
from .interfaces import SnapshotStoreInterface, WidgetPersistenceInterface

log = logging.getLogger(__name__)


class LocalSnapshotStore(SnapshotStoreInterface):
    """Snapshot store keeping one JSON file per scope."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory or SETTINGS.snapshot_dir)

    def path_for(self, client_id: str, fiscal_year: int) -> Path:
        return self.directory / f"{safe_filename(f'{client_id}_{fiscal_year}')}.json"

    def load(self, client_id: str, fiscal_year: int) -> Optional[WidgetSnapshot]:
        path = self.path_for(client_id, fiscal_year)
        try:
            data = read_json(path)
        except PersistenceError as e:
            log.warning(f"Ignoring unreadable snapshot {path.name}: {sanitize_error_message(e.message)}")
            return None
        if data is None:
            return None

        try:
            snapshot = WidgetSnapshot.model_validate(data)
        except PydanticValidationError as e:
            log.warning(f"Ignoring malformed snapshot {path.name}: {format_pydantic_errors(e)}")
            return None

        if (snapshot.client_id, snapshot.fiscal_year) != (client_id, fiscal_year):
            log.warning(f"Snapshot {path.name} belongs to {snapshot.scope_key}; ignoring")
            return None
        return snapshot

    def save(self, snapshot: WidgetSnapshot) -> None:
        path = self.path_for(snapshot.client_id, snapshot.fiscal_year)
        atomic_write_json(path, snapshot.to_dict())
        log.debug(f"Saved {len(snapshot.widgets)} widgets to {path.name}")

    def clear(self, client_id: str, fiscal_year: int) -> None:
        if remove_file(self.path_for(client_id, fiscal_year)):
            log.debug(f"Cleared local snapshot for {client_id}/{fiscal_year}")

    def list_scopes(self) -> List[WidgetSnapshot]:
        """All readable snapshots in the store directory."""
        if not self.directory.exists():
            return []
        snapshots = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                data = read_json(path)
                snapshots.append(WidgetSnapshot.model_validate(data))
            except (PersistenceError, PydanticValidationError):
                log.debug(f"Skipping unreadable snapshot {path.name}")
        return snapshots


def is_transient_error(error: BaseException) -> bool:
    """Connection failures, timeouts and 5xx responses are worth retrying; 4xx are not."""
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(error, requests.HTTPError):
        response = error.response
        return response is not None and response.status_code >= 500
    return False


class RestSnapshotStore(SnapshotStoreInterface):
    """
    Remote snapshot store backed by a PostgREST table.

    Rows are keyed by (client_id, fiscal_year) and carry the snapshot as a
    JSON ``payload`` column. Upserts rely on ``Prefer: resolution=merge-duplicates``.
    """

    def __init__(
        self,
        base_url: str,
        table: str = "report_widget_layouts",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        attempts: int = 1,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the remote store.

        Args:
            base_url: REST endpoint root, e.g. https://host/rest/v1
            table: Table holding widget snapshots
            api_key: Optional API key sent as ``apikey`` and bearer token
            timeout: Per-request timeout in seconds
            attempts: Total attempts per operation (1 disables retry)
            session: Optional preconfigured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.table = table
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if api_key:
            self.session.headers.update({
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
            })

        self._send = retry(
            stop=stop_after_attempt(max(1, attempts)),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True
        )(self._request)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RestSnapshotStore":
        settings = settings or SETTINGS
        if not settings.remote_enabled:
            raise RemoteStoreError("REMOTE_URL is not configured")
        return cls(
            base_url=settings.remote_url,
            table=settings.remote_table,
            api_key=settings.remote_api_key,
            timeout=settings.remote_timeout_seconds,
            attempts=settings.remote_sync_attempts
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.table}"

    @staticmethod
    def _scope_filter(client_id: str, fiscal_year: int) -> Dict[str, str]:
        return {"client_id": f"eq.{client_id}", "fiscal_year": f"eq.{fiscal_year}"}

    def _request(self, method: str, **kwargs) -> requests.Response:
        response = self.session.request(method, self.endpoint, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def _call(self, operation: str, method: str, **kwargs) -> requests.Response:
        try:
            return self._send(method, **kwargs)
        except requests.RequestException as e:
            raise RemoteStoreError(
                f"Remote {operation} failed: {sanitize_error_message(str(e))}",
                details={"table": self.table},
                cause=e
            ) from e

    def load(self, client_id: str, fiscal_year: int) -> Optional[WidgetSnapshot]:
        params = self._scope_filter(client_id, fiscal_year)
        params.update(select="payload", limit="1")
        response = self._call("load", "GET", params=params)

        try:
            rows = response.json()
        except ValueError as e:
            raise RemoteStoreError("Remote load returned invalid JSON", cause=e) from e
        if not rows:
            return None

        try:
            return WidgetSnapshot.model_validate(rows[0]["payload"])
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise RemoteStoreError(
                f"Remote snapshot for {client_id}/{fiscal_year} is malformed",
                cause=e
            ) from e

    def save(self, snapshot: WidgetSnapshot) -> None:
        row: Dict[str, Any] = {
            "client_id": snapshot.client_id,
            "fiscal_year": snapshot.fiscal_year,
            "payload": snapshot.to_dict(),
            "updated_at": snapshot.saved_at.isoformat(),
        }
        self._call(
            "save",
            "POST",
            params={"on_conflict": "client_id,fiscal_year"},
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"}
        )
        log.debug(f"Replicated {snapshot.scope_key} to remote store")

    def clear(self, client_id: str, fiscal_year: int) -> None:
        self._call("clear", "DELETE", params=self._scope_filter(client_id, fiscal_year))


class WidgetPersistence(WidgetPersistenceInterface):
    """
    Write-ahead-then-sync persistence for one (client, fiscal year) scope.

    The local store is authoritative and written synchronously. Remote
    replication runs on a worker pool; only the newest queued write reaches
    the remote store, older ones are skipped.
    """

    def __init__(
        self,
        client_id: str,
        fiscal_year: int,
        local: SnapshotStoreInterface,
        remote: Optional[SnapshotStoreInterface] = None,
        pool: Optional[WorkerPool] = None
    ):
        self.client_id, self.fiscal_year = validate_scope(client_id, fiscal_year)
        self.local = local
        self.remote = remote
        self._pool = pool
        self._status = SyncStatus.IDLE if remote is not None else SyncStatus.DISABLED
        self._last_error: Optional[ReportGridError] = None
        self._listeners: List[Callable[[SyncStatus], None]] = []
        self._lock = threading.Lock()
        self._remote_lock = threading.Lock()
        self._generation = 0

    @property
    def pool(self) -> WorkerPool:
        if self._pool is None:
            self._pool = get_worker_pool(SETTINGS.sync_workers)
        return self._pool

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def last_error(self) -> Optional[ReportGridError]:
        return self._last_error

    def add_status_listener(
        self,
        listener: Callable[[SyncStatus], None]
    ) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return remove

    def _set_status(self, status: SyncStatus) -> None:
        with self._lock:
            if self._status == status:
                return
            self._status = status
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception as e:
                log.warning(f"Sync status listener error: {e}")

    def _record(self, error: Exception, operation: str) -> ReportGridError:
        converted = log_suppressed(log, error, operation)
        self._last_error = converted
        return converted

    def load(self) -> Optional[WidgetSnapshot]:
        snapshot = self.local.load(self.client_id, self.fiscal_year)
        if snapshot is not None or self.remote is None:
            return snapshot

        try:
            snapshot = self.remote.load(self.client_id, self.fiscal_year)
        except Exception as e:
            self._record(e, f"load remote snapshot {self.client_id}/{self.fiscal_year}")
            self._set_status(SyncStatus.FAILED)
            return None

        self._set_status(SyncStatus.SYNCED)
        if snapshot is not None:
            log.info(f"Seeding local store from remote snapshot {snapshot.scope_key}")
            try:
                self.local.save(snapshot)
            except Exception as e:
                self._record(e, f"seed local snapshot {self.client_id}/{self.fiscal_year}")
        return snapshot

    def save(self, widgets: List[Widget], layouts: List[WidgetLayout]) -> None:
        snapshot = WidgetSnapshot(
            client_id=self.client_id,
            fiscal_year=self.fiscal_year,
            widgets=list(widgets),
            layouts=list(layouts)
        )
        try:
            self.local.save(snapshot)
        except Exception as e:
            self._record(e, f"save local snapshot {snapshot.scope_key}")

        if self.remote is not None:
            self._replicate("save", lambda: self.remote.save(snapshot))

    def clear(self) -> None:
        try:
            self.local.clear(self.client_id, self.fiscal_year)
        except Exception as e:
            self._record(e, f"clear local snapshot {self.client_id}/{self.fiscal_year}")

        if self.remote is not None:
            self._replicate(
                "clear",
                lambda: self.remote.clear(self.client_id, self.fiscal_year)
            )

    def _replicate(self, operation: str, action: Callable[[], None]) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation
        self._set_status(SyncStatus.PENDING)
        self.pool.submit(
            self._run_remote,
            operation,
            action,
            generation,
            task_name=f"remote-{operation}"
        )

    def _run_remote(self, operation: str, action: Callable[[], None], generation: int) -> None:
        with self._remote_lock:
            if generation != self._generation:
                log.debug(f"Skipping superseded remote {operation} #{generation}")
                return
            try:
                action()
            except Exception as e:
                self._record(e, f"replicate {operation} for {self.client_id}/{self.fiscal_year}")
                if generation == self._generation:
                    self._set_status(SyncStatus.FAILED)
                return
        if generation == self._generation:
            self._set_status(SyncStatus.SYNCED)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        if self.remote is None:
            return True
        return self.pool.wait_all(timeout)
