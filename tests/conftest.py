"""
Pytest configuration and shared fixtures for reportgrid tests.
"""
import pytest
import tempfile
import shutil
from pathlib import Path
import logging

from reportgrid.cache import DataCache, WidgetCache
from reportgrid.services import LocalSnapshotStore, WidgetPersistence
from reportgrid.utils.config import Settings
from reportgrid.utils.threading import WorkerPool
from reportgrid.widget_manager import WidgetManager
from tests.fixtures.manual_scheduler import ManualScheduler

# Configure test logging
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Disable logging during tests unless specifically needed
logging.getLogger('reportgrid').setLevel(logging.WARNING)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp(prefix="reportgrid_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def settings(temp_dir):
    """Settings isolated from the environment and pointed at a temp directory."""
    return Settings(
        data_dir=temp_dir,
        snapshot_dir=temp_dir / "snapshots",
        dashboard_config_file=temp_dir / "dashboard-configs.json",
        remote_url=None,
    )


@pytest.fixture
def scheduler():
    """Deterministic scheduler with a fake clock."""
    return ManualScheduler()


@pytest.fixture
def local_store(settings):
    return LocalSnapshotStore(settings.snapshot_dir)


@pytest.fixture
def worker_pool():
    pool = WorkerPool(max_workers=2, thread_name_prefix="reportgrid-test")
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def persistence(local_store):
    """Local-only persistence for the acme/2024 scope."""
    return WidgetPersistence("acme", 2024, local=local_store)


@pytest.fixture
def widget_cache(scheduler):
    return WidgetCache(DataCache(max_size=100, default_ttl=300, clock=scheduler.now))


@pytest.fixture
def manager(persistence, widget_cache, scheduler, settings):
    """WidgetManager for acme/2024 driven by the manual scheduler."""
    mgr = WidgetManager(
        "acme",
        2024,
        persistence,
        widget_cache=widget_cache,
        scheduler=scheduler,
        settings=settings
    )
    yield mgr
    mgr.close()
