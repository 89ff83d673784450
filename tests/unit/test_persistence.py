"""
Unit tests for snapshot stores and replicated persistence.
"""
import json
import threading
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import requests

from reportgrid.models import SyncStatus, Widget, WidgetSnapshot
from reportgrid.services import LocalSnapshotStore, RestSnapshotStore, WidgetPersistence
from reportgrid.services.implementations import is_transient_error
from reportgrid.services.interfaces import SnapshotStoreInterface
from reportgrid.utils.exceptions import RemoteStoreError
from tests.fixtures.report_samples import sample_layouts, sample_snapshot, sample_widgets


class InMemoryStore(SnapshotStoreInterface):
    """Remote stand-in recording every call."""

    def __init__(self, fail: bool = False):
        self.snapshots: Dict[Tuple[str, int], WidgetSnapshot] = {}
        self.saved: List[WidgetSnapshot] = []
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RemoteStoreError("remote unavailable")

    def load(self, client_id: str, fiscal_year: int) -> Optional[WidgetSnapshot]:
        self._check()
        return self.snapshots.get((client_id, fiscal_year))

    def save(self, snapshot: WidgetSnapshot) -> None:
        self._check()
        self.saved.append(snapshot)
        self.snapshots[(snapshot.client_id, snapshot.fiscal_year)] = snapshot

    def clear(self, client_id: str, fiscal_year: int) -> None:
        self._check()
        self.snapshots.pop((client_id, fiscal_year), None)


class TestLocalSnapshotStore:
    """Tests for the JSON file store."""

    def test_save_and_load(self, local_store):
        local_store.save(sample_snapshot())

        loaded = local_store.load("acme", 2024)

        assert [w.id for w in loaded.widgets] == ["revenue", "trend", "lines"]
        assert loaded.layouts == sample_layouts()

    def test_missing_scope(self, local_store):
        assert local_store.load("acme", 2023) is None

    def test_file_uses_camel_case(self, local_store):
        local_store.save(sample_snapshot())
        data = json.loads(local_store.path_for("acme", 2024).read_text(encoding="utf-8"))
        assert data["clientId"] == "acme"
        assert data["widgets"][1]["dataSourceId"] == "tb-2024"

    def test_corrupt_file_is_treated_as_absent(self, local_store):
        path = local_store.path_for("acme", 2024)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{truncated", encoding="utf-8")

        assert local_store.load("acme", 2024) is None

    def test_malformed_snapshot_is_treated_as_absent(self, local_store):
        path = local_store.path_for("acme", 2024)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"clientId": "acme", "fiscalYear": 2024, "widgets": [{"id": "x"}]}),
                        encoding="utf-8")

        assert local_store.load("acme", 2024) is None

    def test_clear(self, local_store):
        local_store.save(sample_snapshot())
        local_store.clear("acme", 2024)
        local_store.clear("acme", 2024)

        assert local_store.load("acme", 2024) is None

    def test_list_scopes(self, local_store):
        local_store.save(sample_snapshot("acme", 2023))
        local_store.save(sample_snapshot("acme", 2024))

        assert [s.fiscal_year for s in local_store.list_scopes()] == [2023, 2024]


def make_session(json_body=None):
    session = MagicMock()
    session.headers = {}
    response = MagicMock()
    response.json.return_value = json_body if json_body is not None else []
    session.request.return_value = response
    return session


def http_error(status_code: int) -> requests.HTTPError:
    response = MagicMock()
    response.status_code = status_code
    return requests.HTTPError(f"{status_code} Error", response=response)


class TestRestSnapshotStore:
    """Tests for the PostgREST-backed store with a mocked requests session."""

    def test_headers_include_api_key(self):
        session = make_session()
        RestSnapshotStore("https://db.example.com/rest/v1/", api_key="anon-key", session=session)

        assert session.headers["apikey"] == "anon-key"
        assert session.headers["Authorization"] == "Bearer anon-key"

    def test_load_queries_scope(self):
        session = make_session([{"payload": sample_snapshot().to_dict()}])
        store = RestSnapshotStore("https://db.example.com/rest/v1", session=session)

        snapshot = store.load("acme", 2024)

        assert snapshot.widgets == sample_widgets()
        method, url = session.request.call_args.args
        params = session.request.call_args.kwargs["params"]
        assert method == "GET"
        assert url == "https://db.example.com/rest/v1/report_widget_layouts"
        assert params["client_id"] == "eq.acme"
        assert params["fiscal_year"] == "eq.2024"

    def test_load_empty_result(self):
        store = RestSnapshotStore("https://db.example.com", session=make_session([]))
        assert store.load("acme", 2024) is None

    def test_save_upserts(self):
        session = make_session()
        store = RestSnapshotStore("https://db.example.com", table="layouts", session=session)

        store.save(sample_snapshot())

        kwargs = session.request.call_args.kwargs
        assert session.request.call_args.args[0] == "POST"
        assert kwargs["json"]["client_id"] == "acme"
        assert kwargs["json"]["payload"]["fiscalYear"] == 2024
        assert "merge-duplicates" in kwargs["headers"]["Prefer"]

    def test_network_error_raises_remote_store_error(self):
        session = make_session()
        session.request.side_effect = requests.ConnectionError("connection refused")
        store = RestSnapshotStore("https://db.example.com", session=session)

        with pytest.raises(RemoteStoreError):
            store.save(sample_snapshot())
        assert session.request.call_count == 1

    def test_http_error_raises_remote_store_error(self):
        session = make_session()
        session.request.return_value.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
        store = RestSnapshotStore("https://db.example.com", session=session)

        with pytest.raises(RemoteStoreError):
            store.clear("acme", 2024)

    def test_configured_attempts_retry(self):
        session = make_session([])
        session.request.side_effect = [requests.Timeout("slow"), session.request.return_value]
        store = RestSnapshotStore("https://db.example.com", attempts=2, session=session)

        assert store.load("acme", 2024) is None
        assert session.request.call_count == 2

    def test_client_errors_are_not_retried(self):
        session = make_session()
        session.request.return_value.raise_for_status.side_effect = http_error(401)
        store = RestSnapshotStore("https://db.example.com", attempts=3, session=session)

        with pytest.raises(RemoteStoreError):
            store.save(sample_snapshot())
        assert session.request.call_count == 1

    def test_server_errors_are_retried(self):
        session = make_session([])
        session.request.return_value.raise_for_status.side_effect = [http_error(503), None]
        store = RestSnapshotStore("https://db.example.com", attempts=2, session=session)

        assert store.load("acme", 2024) is None
        assert session.request.call_count == 2

    @pytest.mark.parametrize("error,expected", [
        (requests.ConnectionError("refused"), True),
        (requests.Timeout("slow"), True),
        (http_error(500), True),
        (http_error(404), False),
        (requests.HTTPError("no response"), False),
        (requests.TooManyRedirects("loop"), False),
    ])
    def test_transient_error_classification(self, error, expected):
        assert is_transient_error(error) is expected

    def test_malformed_remote_payload(self):
        store = RestSnapshotStore("https://db.example.com", session=make_session([{"payload": {"widgets": 3}}]))
        with pytest.raises(RemoteStoreError):
            store.load("acme", 2024)

    def test_from_settings_requires_url(self, settings):
        with pytest.raises(RemoteStoreError):
            RestSnapshotStore.from_settings(settings)


class TestWidgetPersistence:
    """Write-ahead-then-sync semantics."""

    def test_local_only_is_disabled(self, persistence):
        assert persistence.status == SyncStatus.DISABLED
        assert persistence.wait_idle() is True

    def test_save_writes_local_then_remote(self, local_store, worker_pool):
        remote = InMemoryStore()
        persistence = WidgetPersistence("acme", 2024, local_store, remote, pool=worker_pool)
        statuses = []
        persistence.add_status_listener(statuses.append)

        persistence.save(sample_widgets(), sample_layouts())

        assert local_store.load("acme", 2024) is not None
        assert persistence.wait_idle(5)
        assert remote.snapshots[("acme", 2024)].widgets == sample_widgets()
        assert persistence.status == SyncStatus.SYNCED
        assert statuses == [SyncStatus.PENDING, SyncStatus.SYNCED]

    def test_remote_failure_is_recorded_not_raised(self, local_store, worker_pool):
        persistence = WidgetPersistence("acme", 2024, local_store, InMemoryStore(fail=True), pool=worker_pool)

        persistence.save(sample_widgets(), sample_layouts())
        assert persistence.wait_idle(5)

        assert persistence.status == SyncStatus.FAILED
        assert isinstance(persistence.last_error, RemoteStoreError)
        assert local_store.load("acme", 2024) is not None

    def test_load_prefers_local(self, local_store, worker_pool):
        remote = InMemoryStore()
        remote.snapshots[("acme", 2024)] = WidgetSnapshot(client_id="acme", fiscal_year=2024)
        local_store.save(sample_snapshot())
        persistence = WidgetPersistence("acme", 2024, local_store, remote, pool=worker_pool)

        assert len(persistence.load().widgets) == 3

    def test_load_falls_back_to_remote_and_seeds_local(self, local_store, worker_pool):
        remote = InMemoryStore()
        remote.snapshots[("acme", 2024)] = sample_snapshot()
        persistence = WidgetPersistence("acme", 2024, local_store, remote, pool=worker_pool)

        snapshot = persistence.load()

        assert len(snapshot.widgets) == 3
        assert local_store.load("acme", 2024) is not None
        assert persistence.status == SyncStatus.SYNCED

    def test_remote_load_failure(self, local_store, worker_pool):
        persistence = WidgetPersistence("acme", 2024, local_store, InMemoryStore(fail=True), pool=worker_pool)

        assert persistence.load() is None
        assert persistence.status == SyncStatus.FAILED

    def test_clear_reaches_both_stores(self, local_store, worker_pool):
        remote = InMemoryStore()
        persistence = WidgetPersistence("acme", 2024, local_store, remote, pool=worker_pool)
        persistence.save(sample_widgets(), sample_layouts())
        persistence.wait_idle(5)

        persistence.clear()
        persistence.wait_idle(5)

        assert local_store.load("acme", 2024) is None
        assert ("acme", 2024) not in remote.snapshots

    def test_superseded_writes_are_skipped(self, local_store, worker_pool):
        release = threading.Event()
        remote = InMemoryStore()
        original_save = remote.save

        def slow_save(snapshot):
            release.wait(5)
            original_save(snapshot)

        remote.save = slow_save
        persistence = WidgetPersistence("acme", 2024, local_store, remote, pool=worker_pool)

        for count in (1, 2, 3):
            persistence.save([Widget(id=f"w{n}", type="kpi", title="t") for n in range(count)], [])
        release.set()
        assert persistence.wait_idle(5)

        assert len(remote.saved[-1].widgets) == 3
        assert len(remote.saved) <= 2
        assert persistence.status == SyncStatus.SYNCED

    def test_failing_listener_is_isolated(self, local_store, worker_pool):
        persistence = WidgetPersistence("acme", 2024, local_store, InMemoryStore(), pool=worker_pool)

        def broken(_):
            raise RuntimeError("ui gone")

        remove = persistence.add_status_listener(broken)
        persistence.save([], [])
        assert persistence.wait_idle(5)
        remove()

        assert persistence.status == SyncStatus.SYNCED
