"""
Unit tests for DataCache and WidgetCache.
"""
import pytest

from reportgrid.cache import DataCache, WidgetCache, data_hash
from reportgrid.models import Widget
from tests.fixtures.manual_scheduler import ManualScheduler


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return DataCache(max_size=3, default_ttl=10, clock=clock)


class TestDataCacheExpiry:
    """Expiry with an injected clock."""

    def test_fresh_entry_is_returned(self, cache):
        cache.set("a", {"rows": 1})
        assert cache.get("a") == {"rows": 1}

    def test_expired_entry_is_a_miss(self, cache, clock):
        cache.set("a", 1)
        clock.now = 10

        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.get_stats()["misses"] == 1

    def test_custom_ttl(self, cache, clock):
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)
        clock.now = 5

        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_has_does_not_touch_stats(self, cache, clock):
        cache.set("a", 1)
        assert cache.has("a")
        assert not cache.has("b")
        clock.now = 11
        assert not cache.has("a")

        stats = cache.get_stats()
        assert stats["hits"] == 0
        assert stats["misses"] == 0

    def test_sweep_removes_only_expired(self, cache, clock):
        cache.set("old", 1, ttl=1)
        cache.set("new", 2, ttl=100)
        clock.now = 2

        assert cache.sweep() == 1
        assert cache.has("new")


class TestDataCacheEviction:
    """Eviction bound."""

    def test_size_never_exceeds_max(self, cache):
        for index in range(10):
            cache.set(f"k{index}", index)
            assert len(cache) <= 3

    def test_oldest_inserted_is_evicted(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")
        cache.set("d", 4)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("d") == 4

    def test_overwrite_does_not_evict(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.set("a", 10)

        assert len(cache) == 3
        assert cache.get("a") == 10

    def test_default_max_size(self):
        assert DataCache().max_size == 100


class TestDataCacheStats:

    def test_hit_rate_is_percentage(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.get_stats()

        assert stats == {"size": 1, "hit_rate": 75.0, "max_size": 3, "hits": 3, "misses": 1}

    def test_empty_hit_rate(self, cache):
        assert cache.get_stats()["hit_rate"] == 0.0

    def test_clear_resets_stats(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.clear()

        assert cache.get_stats() == {"size": 0, "hit_rate": 0.0, "max_size": 3, "hits": 0, "misses": 0}

    def test_delete_and_prefix(self, cache):
        cache.set("widget-data:w1:a", 1)
        cache.set("widget-data:w1:b", 2)
        cache.set("widget-data:w2:a", 3)

        assert cache.invalidate_prefix("widget-data:w1:") == 2
        assert cache.delete("widget-data:w2:a") is True
        assert cache.delete("widget-data:w2:a") is False


class TestSweeper:
    """Periodic sweep driven by a scheduler."""

    def test_sweeper_runs_every_interval(self):
        scheduler = ManualScheduler()
        cache = DataCache(max_size=10, default_ttl=30, clock=scheduler.now)
        cache.set("a", 1)
        cache.start_sweeper(scheduler, interval=60)

        scheduler.advance(59)
        assert len(cache) == 1
        scheduler.advance(1)
        assert len(cache) == 0

        cache.set("b", 2)
        scheduler.advance(60)
        assert len(cache) == 0

    def test_destroy_stops_sweeper(self):
        scheduler = ManualScheduler()
        cache = DataCache(max_size=10, default_ttl=30, clock=scheduler.now)
        cache.start_sweeper(scheduler, interval=60)
        cache.set("a", 1)

        cache.destroy()

        assert len(cache) == 0
        assert scheduler.pending_count == 0


class TestWidgetCache:
    """Tests for WidgetCache keys and invalidation."""

    def setup_method(self):
        self.clock = FakeClock()
        self.widget_cache = WidgetCache(DataCache(max_size=100, default_ttl=300, clock=self.clock))

    def test_widget_round_trip_is_a_copy(self):
        widget = Widget(id="w1", type="kpi", title="Revenue", config={"metric": "sum"})
        self.widget_cache.set_widget(widget)
        widget.config["metric"] = "avg"

        assert self.widget_cache.get_widget("w1").config == {"metric": "sum"}

    def test_invalidate_widget_drops_data_entries(self):
        self.widget_cache.set_widget(Widget(id="w1", type="kpi", title="Revenue"))
        self.widget_cache.set_widget(Widget(id="w10", type="kpi", title="Other"))
        self.widget_cache.set_widget_data("w1", data_hash(period="Q1"), [1, 2])
        self.widget_cache.set_widget_data("w1", data_hash(period="Q2"), [3])
        self.widget_cache.set_widget_data("w10", data_hash(period="Q1"), [4])

        assert self.widget_cache.invalidate_widget("w1") == 3

        assert self.widget_cache.get_widget("w1") is None
        assert self.widget_cache.get_widget("w10") is not None
        assert self.widget_cache.get_widget_data("w10", data_hash(period="Q1")) == [4]

    def test_analysis_results_expire_after_ten_minutes(self):
        self.widget_cache.set_analysis_result("acme", 2024, "ratios", {"current": 1.4})
        self.clock.now = 599
        assert self.widget_cache.get_analysis_result("acme", 2024, "ratios") == {"current": 1.4}
        self.clock.now = 600
        assert self.widget_cache.get_analysis_result("acme", 2024, "ratios") is None

    def test_data_hash_is_order_independent(self):
        assert data_hash(a=1, b=2) == data_hash(b=2, a=1)
        assert data_hash(a=1) != data_hash(a=2)
