"""API response cache with an in-process tier and a durable on-disk tier."""

import json
import hashlib
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional


# Payload stored for lookups the provider answered with "not found"
NOT_FOUND = {"__citegap_not_found__": True}

INDEX_FILE = "index.json"


class APICache:
    """Persistent cache for metadata API responses keyed by request path.

    Entries live in two tiers: a hot in-memory dict and one JSON file per
    entry under `cache_dir`, plus an index file mapping cache keys to their
    timestamps so lookups never scan the directory. Expiry is checked on
    read; `cleanup()` sweeps explicitly.
    """

    def __init__(self, cache_dir: str = ".citegap-cache", cache_duration_days: int = 7):
        self.cache_dir = Path(cache_dir).resolve()
        self.cache_duration = timedelta(days=cache_duration_days)
        self.logger = logging.getLogger(__name__)
        self.memory_cache: Dict[str, Dict[str, Any]] = {}
        self.cache_index: Dict[str, Dict[str, Any]] = {}
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.load_index()

    def _get_cache_key(self, request_path: str) -> str:
        """Hash the exact request path, query string included."""
        return hashlib.sha256(request_path.encode('utf-8')).hexdigest()

    def _get_cache_file(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    @property
    def index_file(self) -> Path:
        return self.cache_dir / INDEX_FILE

    def load_index(self) -> None:
        """Load the durable index from disk."""
        if not self.index_file.exists():
            self.cache_index = {}
            return

        try:
            with open(self.index_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("index is not a JSON object")
            self.cache_index = data
            self.logger.debug(f"Loaded cache index with {len(self.cache_index)} entries")
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to load cache index: {e}")
            self.cache_index = {}

    def save_index(self) -> None:
        """Write the durable index to disk."""
        try:
            with open(self.index_file, 'w', encoding='utf-8') as f:
                json.dump(self.cache_index, f, indent=2)
        except OSError as e:
            self.logger.warning(f"Failed to save cache index: {e}")

    def _is_valid(self, cached_at: Optional[str]) -> bool:
        if not cached_at:
            return False
        try:
            cache_time = datetime.fromisoformat(cached_at)
        except (TypeError, ValueError):
            return False
        return datetime.now() - cache_time < self.cache_duration

    def _evict(self, key: str) -> None:
        """Remove an entry from both tiers."""
        self.memory_cache.pop(key, None)
        self.cache_index.pop(key, None)
        self._get_cache_file(key).unlink(missing_ok=True)
        self.save_index()

    def get(self, request_path: str) -> Optional[Any]:
        """Return the cached payload for a request path, or None if absent or expired."""
        key = self._get_cache_key(request_path)

        cached = self.memory_cache.get(key)
        if cached is not None:
            if self._is_valid(cached.get('cached_at')):
                return cached['data']
            self.logger.debug(f"Cache expired for: {request_path}")
            self._evict(key)
            return None

        info = self.cache_index.get(key)
        if info is None:
            return None

        if not self._is_valid(info.get('cached_at')):
            self.logger.debug(f"Cache expired for: {request_path}")
            self._evict(key)
            return None

        try:
            with open(self._get_cache_file(key), 'r', encoding='utf-8') as f:
                cached = json.load(f)
            if not isinstance(cached, dict) or 'data' not in cached:
                raise ValueError("malformed cache entry")
        except (OSError, ValueError) as e:
            self.logger.warning(f"Discarding unreadable cache entry for {request_path}: {e}")
            self._evict(key)
            return None

        self.memory_cache[key] = cached
        return cached['data']

    def set(self, request_path: str, data: Any) -> None:
        """Store a payload in both tiers. Disk failures are logged, never raised."""
        key = self._get_cache_key(request_path)
        cached_at = datetime.now().isoformat()
        cache_entry = {
            'data': data,
            'cached_at': cached_at,
            'request_path': request_path
        }

        self.memory_cache[key] = cache_entry

        try:
            with open(self._get_cache_file(key), 'w', encoding='utf-8') as f:
                json.dump(cache_entry, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning(f"Failed to write cache file for {request_path}: {e}")
            return

        self.cache_index[key] = {'cached_at': cached_at, 'request_path': request_path}
        self.save_index()

    def cleanup(self) -> int:
        """Remove expired entries from both tiers and return how many were removed."""
        expired_keys = set()

        for key, cached in self.memory_cache.items():
            if not self._is_valid(cached.get('cached_at')):
                expired_keys.add(key)

        for key, info in self.cache_index.items():
            if not self._is_valid(info.get('cached_at')):
                expired_keys.add(key)

        for key in expired_keys:
            self.memory_cache.pop(key, None)
            self.cache_index.pop(key, None)
            self._get_cache_file(key).unlink(missing_ok=True)

        if expired_keys:
            self.save_index()
            self.logger.info(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    def clear(self) -> None:
        """Remove every cached entry."""
        self.memory_cache.clear()

        try:
            for path in self.cache_dir.glob('*.json'):
                path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Failed to clear cache: {e}")

        self.cache_index = {}
        self.save_index()

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the cache."""
        total_size_bytes = 0
        try:
            for path in self.cache_dir.glob('*.json'):
                total_size_bytes += path.stat().st_size
        except OSError as e:
            self.logger.debug(f"Failed to size cache directory: {e}")

        return {
            'hot_entries': len(self.memory_cache),
            'durable_entries': len(self.cache_index),
            'total_size_bytes': total_size_bytes,
            'cache_dir': str(self.cache_dir)
        }
