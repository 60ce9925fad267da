"""Metric cache collaborator: live widget data keyed by widget id."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

from datawatch.config import Settings


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
CACHE_PREFIX = "datawatch:"


class WidgetDataCache(Protocol):
    def get_widget_data(self, widget_id: str) -> Any | None: ...


def widget_data_key(widget_id: str) -> str:
    return f"{CACHE_PREFIX}widget:{widget_id}:data"


class InMemoryWidgetCache:
    def __init__(self, default_ttl: float | None = None) -> None:
        self._default_ttl = default_ttl
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def set_widget_data(self, widget_id: str, data: Any, ttl: float | None = None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = time.monotonic() + ttl if ttl is not None else None
        with self._lock:
            self._evict_expired()
            self._entries[widget_data_key(widget_id)] = (data, expires_at)

    def _evict_expired(self) -> None:
        now = time.monotonic()
        expired = [
            key for key, (_, expires_at) in self._entries.items() if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._entries[key]

    def __contains__(self, widget_id: object) -> bool:
        with self._lock:
            return widget_data_key(str(widget_id)) in self._entries

    def get_widget_data(self, widget_id: str) -> Any | None:
        key = widget_data_key(widget_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return data


class RedisWidgetCache:
    """Reads widget payloads stored as JSON strings by the refresh workers."""

    def __init__(self, client: redis.Redis, default_ttl: int = DEFAULT_TTL_SECONDS) -> None:
        self._client = client
        self._default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int = DEFAULT_TTL_SECONDS) -> "RedisWidgetCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), default_ttl=default_ttl)

    def set_widget_data(self, widget_id: str, data: Any, ttl: int | None = None) -> None:
        self._client.set(widget_data_key(widget_id), json.dumps(data), ex=ttl or self._default_ttl)

    def get_widget_data(self, widget_id: str) -> Any | None:
        raw = self._client.get(widget_data_key(widget_id))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry for widget %s", widget_id)
            return None


def build_widget_cache(settings: Settings) -> WidgetDataCache:
    if settings.redis_url:
        logger.info("Using Redis widget cache")
        return RedisWidgetCache.from_url(settings.redis_url)
    return InMemoryWidgetCache()
