"""
SQLite response cache and the rate-limited GET used by the AppVeyor client.
Raw JSON bodies are stored by cache key with the time they were written.
"""

import sqlite3
import json
import time
import threading
from typing import Optional, Any, Dict, List
import requests  # noqa: F401  (tests patch storage.cache.requests.get)

from .retry import perform_request_with_retries, configure_retry

DB_PATH = None  # can be overridden by caller

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS api_cache (
    key TEXT PRIMARY KEY,
    body TEXT,
    status INTEGER,
    stored_at REAL
);
"""


class Cache:
    """Thread-safe key/value store for API responses.

    :param path: SQLite file path; None (and no DB_PATH) keeps everything in memory.
    :param max_entries: prune the oldest rows once the table grows past this.
    :param ttl_seconds: rows older than this are dropped on read and on write.
    """

    def __init__(self, path: Optional[str] = None, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None):
        self.path = path or DB_PATH or ':memory:'
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        self.max_entries = int(max_entries) if max_entries is not None else None
        self.ttl_seconds = float(ttl_seconds) if ttl_seconds is not None else None
        with self._lock, self.conn:
            self.conn.executescript(SQL_CREATE)

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Row count plus oldest/newest write times."""
        with self._lock:
            count, oldest, newest = self.conn.execute('SELECT COUNT(1), MIN(stored_at), MAX(stored_at) FROM api_cache').fetchone()
        return {
            'count': int(count or 0),
            'oldest': float(oldest) if oldest is not None else None,
            'newest': float(newest) if newest is not None else None,
        }

    # noinspection SqlResolve
    def list_keys(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """Keys with status and write time, newest first."""
        with self._lock:
            rows = self.conn.execute('SELECT key, status, stored_at FROM api_cache ORDER BY stored_at DESC LIMIT ?', (limit,)).fetchall()
        return [{'key': k, 'status': int(status or 0), 'timestamp': float(ts or 0)} for k, status, ts in rows]

    # noinspection SqlWithoutWhere
    def clear(self):
        with self._lock, self.conn:
            self.conn.execute('DELETE FROM api_cache')

    # noinspection SqlResolve
    def delete_key(self, key: str) -> int:
        """Returns the number of rows removed."""
        with self._lock, self.conn:
            return self.conn.execute('DELETE FROM api_cache WHERE key = ?', (key,)).rowcount

    # noinspection SqlResolve
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute('SELECT body, status, stored_at FROM api_cache WHERE key = ?', (key,)).fetchone()
        if not row:
            return None
        body, status, stored_at = row
        if self.ttl_seconds is not None and stored_at is not None and time.time() - float(stored_at) > self.ttl_seconds:
            self.delete_key(key)
            return None
        try:
            parsed = json.loads(body)
        except (TypeError, ValueError):
            parsed = body
        return {'response': parsed, 'status': status, 'timestamp': stored_at}

    # noinspection SqlResolve
    def set(self, key: str, response: Any, status: int = 200):
        try:
            payload = json.dumps(response)
        except (TypeError, ValueError):
            payload = json.dumps(str(response))
        with self._lock, self.conn:
            self.conn.execute('REPLACE INTO api_cache(key, body, status, stored_at) VALUES (?, ?, ?, ?)', (key, payload, status, time.time()))
            self._prune()

    # noinspection SqlResolve
    def _prune(self):
        """Apply TTL and size limits. Caller holds the lock and the transaction."""
        if self.ttl_seconds is not None:
            self.conn.execute('DELETE FROM api_cache WHERE stored_at < ?', (time.time() - self.ttl_seconds,))
        if self.max_entries is not None:
            (count,) = self.conn.execute('SELECT COUNT(1) FROM api_cache').fetchone()
            excess = int(count or 0) - self.max_entries
            if excess > 0:
                self.conn.execute(
                    'DELETE FROM api_cache WHERE key IN (SELECT key FROM api_cache ORDER BY stored_at ASC LIMIT ?)', (excess,)
                )


def _cached_fresh(cache: Optional[Cache], cache_key: Optional[str], max_age: Optional[float]):
    if not cache or not cache_key:
        return None
    cached = cache.get(cache_key)
    if not cached or cached.get('status') != 200:
        return None
    if max_age is not None and time.time() - float(cached.get('timestamp') or 0) > float(max_age):
        return None
    return cached


def rate_limited_get(
    url: str,
    headers: Dict[str, str] = None,
    params: Dict[str, Any] = None,
    cache: Cache = None,
    cache_key: str = None,
    min_wait: Optional[float] = None,
    max_age: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
) -> Dict[str, Any]:
    """GET with caching, rate-limit handling and retries.

    A fresh cached 200 (younger than max_age, when given) short-circuits the request.
    """
    cached = _cached_fresh(cache, cache_key, max_age)
    if cached:
        return cached
    return perform_request_with_retries(
        url, headers or {}, params or {}, cache, cache_key or '', min_wait, max_retries, backoff_base, backoff_jitter, max_backoff
    )


__all__ = ["Cache", "rate_limited_get", "configure_retry"]
