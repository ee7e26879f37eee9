"""
TTL caches for scan results and exchange rates.

Entries expire ``ttl_seconds`` after they are stored. The clock is injectable
so expiry can be tested without sleeping. When ``path`` is given the cache is
mirrored to a JSON file guarded by a FileLock; values must then be JSON
serializable.
"""

import hashlib
import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock

from src.utils.constants import CLASSIFIER_VERSION
from src.utils.logger import logger


def request_key(**options) -> str:
    """SHA-256 over the request options plus the classifier version."""
    payload = json.dumps({'options': options, 'version': CLASSIFIER_VERSION}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


class TTLCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time, path: Optional[Path] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.path = Path(path) if path else None
        self._entries = {}
        self._lock = threading.Lock()
        if self.path:
            self._entries = self._read_file()

    def __contains__(self, key) -> bool:
        return self.get(key) is not None

    def __len__(self):
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self.clock() - entry['stored_at'] >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry['value']

    def set(self, key: str, value: Any):
        with self._lock:
            self._entries[key] = {'stored_at': self.clock(), 'value': value}
            self._purge_expired()
        self._write_file()

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            self._write_file()
        return removed

    def clear(self):
        with self._lock:
            self._entries = {}
        self._write_file()

    def _purge_expired(self):
        now = self.clock()
        expired = [k for k, e in self._entries.items() if now - e['stored_at'] >= self.ttl_seconds]
        for key in expired:
            del self._entries[key]

    # ------------------------------------------
    # persistence
    # ------------------------------------------

    def _lock_file(self) -> FileLock:
        return FileLock(str(self.path) + '.lock', timeout=10)

    def _read_file(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self._lock_file():
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cache file {self.path.name} unreadable ({e}); starting empty")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict) and 'stored_at' in v and 'value' in v}

    def _write_file(self):
        if not self.path:
            return
        with self._lock:
            snapshot = dict(self._entries)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock_file():
                with open(self.path, 'w', encoding='utf-8') as f:
                    json.dump(snapshot, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to write cache {self.path.name}: {e}")
