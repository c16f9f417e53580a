"""Result cache for analyses.

Entries are opaque strings with an expiry. Two stores are provided: an
in-process dictionary and Redis. Expired entries are indistinguishable from
missing ones. Every fresh entry has a longer-lived stale twin (see
``stale_key``) that the analyzer falls back to when the page cannot be
fetched.
"""
from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Mapping, Protocol

import redis

from .config import Settings
from .logging_utils import get_logger
from .models import AnalysisOptions, CacheEntry
from .urls import normalize_url

log = get_logger("cache")

KEY_PREFIX = "sitez:analysis:"
STALE_PREFIX = "sitez:stale:"


def derive_cache_key(url: str, options: AnalysisOptions | Mapping[str, Any]) -> str:
    """sha256 over the normalized URL and the sorted-key JSON of the options."""
    canonical = options.canonical() if isinstance(options, AnalysisOptions) else dict(options)
    material = normalize_url(url) + "|" + json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return KEY_PREFIX + hashlib.sha256(material.encode("utf-8")).hexdigest()


def stale_key(key: str) -> str:
    """Companion key holding the last good payload past its normal TTL."""
    return STALE_PREFIX + key[len(KEY_PREFIX):] if key.startswith(KEY_PREFIX) else STALE_PREFIX + key


class CacheStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, payload: str, ttl: int) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCacheStore:
    def __init__(self, clock: Callable[[], float] = time.time, max_entries: int = 2048):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0}

    def get(self, key: str) -> str | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                if entry is not None:
                    self._entries.pop(key, None)
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry.payload

    def set(self, key: str, payload: str, ttl: int) -> None:
        if ttl <= 0:
            return
        with self._lock:
            if len(self._entries) >= self._max_entries and key not in self._entries:
                self._evict_locked()
            self._entries[key] = CacheEntry(key=key, payload=payload, expires_at=self._clock() + ttl)
            self._stats["sets"] += 1

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {**self._stats, "size": len(self._entries)}

    def _evict_locked(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            self._entries.pop(k, None)
        if len(self._entries) >= self._max_entries:
            oldest = min(self._entries.values(), key=lambda e: e.expires_at)
            self._entries.pop(oldest.key, None)
        self._stats["evictions"] += 1


class RedisCacheStore:
    """Redis-backed store. Redis errors are logged and read as misses."""

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.from_url(url, decode_responses=True))

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            log.warning("redis ping failed: %s", e)
            return False

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except redis.RedisError as e:
            log.warning("redis get failed for %s: %s", key, e)
            return None
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, payload: str, ttl: int) -> None:
        if ttl <= 0:
            return
        try:
            self._client.setex(key, ttl, payload)
        except redis.RedisError as e:
            log.warning("redis set failed for %s: %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            log.warning("redis delete failed for %s: %s", key, e)


def build_cache_store(settings: Settings) -> CacheStore:
    if settings.redis_url:
        store = RedisCacheStore.from_url(settings.redis_url)
        if store.ping():
            log.info("using redis cache")
            return store
        log.warning("redis unavailable, falling back to in-process cache")
    return MemoryCacheStore()


class SingleFlight:
    """Collapse concurrent work on the same key onto one leader.

    ``enter`` returns True for the leader. Followers block until the leader
    calls ``exit`` and then get False, at which point the leader's result is
    expected to be in the cache.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._inflight: dict[str, dict[str, Any]] = {}
        self.waits = 0

    def enter(self, key: str, timeout: float | None = None) -> bool:
        if not self.enabled:
            return True
        with self._lock:
            entry = self._inflight.get(key)
            if entry is None:
                self._inflight[key] = {"cond": threading.Condition(self._lock), "running": True}
                return True
            cond: threading.Condition = entry["cond"]
            self.waits += 1
            deadline = None if timeout is None else time.monotonic() + timeout
            while entry["running"]:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    break
                cond.wait(remaining)
            return False

    def exit(self, key: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            entry = self._inflight.pop(key, None)
            if entry and entry["running"]:
                entry["running"] = False
                entry["cond"].notify_all()
