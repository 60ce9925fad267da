import time

from datawatch.config import load_settings
from datawatch.validation.cache import (
    InMemoryWidgetCache,
    RedisWidgetCache,
    build_widget_cache,
    widget_data_key,
)


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.expiry = {}

    def set(self, key, value, ex=None):
        self.values[key] = value
        self.expiry[key] = ex

    def get(self, key):
        return self.values.get(key)


def test_widget_data_key():
    assert widget_data_key("w-1") == "datawatch:widget:w-1:data"


def test_in_memory_cache_hit_and_miss():
    cache = InMemoryWidgetCache()
    cache.set_widget_data("w-1", {"revenue": 10})

    assert cache.get_widget_data("w-1") == {"revenue": 10}
    assert cache.get_widget_data("w-2") is None


def test_in_memory_cache_expires_entries(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    cache = InMemoryWidgetCache(default_ttl=60)
    cache.set_widget_data("w-1", {"revenue": 10})

    now[0] += 61

    assert cache.get_widget_data("w-1") is None


def test_in_memory_cache_evicts_expired_entries_on_write(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    cache = InMemoryWidgetCache(default_ttl=60)
    cache.set_widget_data("w-1", {"revenue": 10})
    cache.set_widget_data("w-2", {"revenue": 20}, ttl=600)

    now[0] += 61
    cache.set_widget_data("w-3", {"revenue": 30})

    assert "w-1" not in cache
    assert "w-2" in cache
    assert "w-3" in cache


def test_in_memory_cache_does_not_track_reads():
    cache = InMemoryWidgetCache()

    for _ in range(3):
        cache.get_widget_data("w-1")

    assert not hasattr(cache, "reads")


def test_in_memory_cache_keeps_falsy_payloads():
    cache = InMemoryWidgetCache()
    cache.set_widget_data("w-1", {})

    assert cache.get_widget_data("w-1") == {}


def test_redis_cache_round_trips_json():
    client = FakeRedis()
    cache = RedisWidgetCache(client)

    cache.set_widget_data("w-1", {"revenue": 10})

    assert client.values["datawatch:widget:w-1:data"] == '{"revenue": 10}'
    assert client.expiry["datawatch:widget:w-1:data"] == 300
    assert cache.get_widget_data("w-1") == {"revenue": 10}
    assert cache.get_widget_data("w-2") is None


def test_redis_cache_discards_undecodable_entries():
    client = FakeRedis()
    client.values["datawatch:widget:w-1:data"] = "{not json"

    assert RedisWidgetCache(client).get_widget_data("w-1") is None


def test_build_widget_cache(monkeypatch):
    monkeypatch.delenv("DATAWATCH_REDIS_URL", raising=False)
    assert isinstance(build_widget_cache(load_settings()), InMemoryWidgetCache)

    monkeypatch.setenv("DATAWATCH_REDIS_URL", "redis://localhost:6379/0")
    assert isinstance(build_widget_cache(load_settings()), RedisWidgetCache)
