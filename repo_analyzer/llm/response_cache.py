"""Content-addressed cache of model responses.

Entries are keyed by ``generate_key`` and kept in LRU order in memory.
The orchestrator persists the cache once per run with the same atomic
write used for the change cache. A corrupt file is moved aside rather
than silently overwritten.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..cache.storage import atomic_write_json, read_json
from ..errors import CacheLoadError
from ..utils.logging import get_logger
from .cache_key import CacheKeyRequest

logger = get_logger("response_cache")

DEFAULT_CACHE_FILE = ".ai/llm_cache.json"
DEFAULT_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_MAX_ENTRIES = 1000


def _checksum(response: dict[str, Any]) -> str:
    payload = json.dumps(response, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class ResponseCacheEntry:
    """Cached model response."""

    key: str
    response: dict[str, Any]
    created_at: float
    size_bytes: int
    expires_at: float | None = None
    access_count: int = 0
    checksum: str = ""
    request: dict[str, Any] | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) > self.expires_at

    def is_valid(self) -> bool:
        """Whether the stored checksum still matches the response payload."""
        return bool(self.checksum) and self.checksum == _checksum(self.response)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data = {
            "response": self.response,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "size_bytes": self.size_bytes,
            "access_count": self.access_count,
            "checksum": self.checksum,
        }
        if self.request is not None:
            data["request"] = self.request
        return data

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> "ResponseCacheEntry":
        """Deserialize from dictionary.

        Raises:
            KeyError, TypeError, ValueError, AttributeError: On malformed data
        """
        expires_at = data.get("expires_at")
        return cls(
            key=key,
            response=data["response"],
            created_at=float(data["created_at"]),
            size_bytes=int(data["size_bytes"]),
            expires_at=float(expires_at) if expires_at is not None else None,
            access_count=int(data.get("access_count", 0)),
            checksum=data.get("checksum", ""),
            request=data.get("request"),
        )


@dataclass
class CacheStats:
    """Aggregate response cache counters."""

    total_entries: int = 0
    expired_entries: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    total_size_bytes: int = 0
    evictions: int = 0

    def record_lookup(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1
        lookups = self.hits + self.misses
        self.hit_rate = self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "expired_entries": self.expired_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "total_size_bytes": self.total_size_bytes,
            "evictions": self.evictions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheStats":
        return cls(
            total_entries=int(data.get("total_entries", 0)),
            expired_entries=int(data.get("expired_entries", 0)),
            hits=int(data.get("hits", 0)),
            misses=int(data.get("misses", 0)),
            hit_rate=float(data.get("hit_rate", 0.0)),
            total_size_bytes=int(data.get("total_size_bytes", 0)),
            evictions=int(data.get("evictions", 0)),
        )


class ResponseCache:
    """LRU response cache backed by a JSON file.

    Features:
    - TTL expiration (expired entries count as misses)
    - LRU eviction above ``max_entries``
    - Checksum validation of entries read from disk
    - Thread-safe lookups and inserts from concurrent agents
    """

    VERSION = 1

    def __init__(
        self,
        path: Path,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        """Initialize the cache.

        Args:
            path: Cache file location
            ttl_seconds: Entry lifetime, None for no expiry
            max_entries: Entries kept before the least recently used is evicted
        """
        self.path = Path(path)
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries

        self._entries: OrderedDict[str, ResponseCacheEntry] = OrderedDict()
        self._stats = CacheStats()
        self._created_at = time.time()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load entries from disk; any problem leaves an empty cache."""
        try:
            self._load()
        except CacheLoadError as e:
            logger.warning(f"Resetting response cache: {e}")
            with self._lock:
                self._entries.clear()
                self._stats = CacheStats()
                self._created_at = time.time()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            data = read_json(self.path)
            if not isinstance(data, dict):
                raise ValueError("top-level value is not an object")
        except (OSError, ValueError) as e:
            backup = self._backup_corrupted()
            raise CacheLoadError(f"corrupted cache file {self.path} (moved to {backup}): {e}") from e

        if data.get("version") != self.VERSION:
            raise CacheLoadError(f"version {data.get('version')!r} != {self.VERSION}")

        raw_entries = data.get("entries", {})
        raw_stats = data.get("stats", {})
        if not isinstance(raw_entries, dict) or not isinstance(raw_stats, dict):
            backup = self._backup_corrupted()
            raise CacheLoadError(
                f"malformed cache file {self.path} (moved to {backup}): "
                "entries and stats must be objects"
            )
        try:
            stats = CacheStats.from_dict(raw_stats)
            created_at = float(data.get("created_at", time.time()))
        except (TypeError, ValueError) as e:
            backup = self._backup_corrupted()
            raise CacheLoadError(f"malformed cache file {self.path} (moved to {backup}): {e}") from e

        now = time.time()
        entries: OrderedDict[str, ResponseCacheEntry] = OrderedDict()
        dropped = expired = 0
        for key, raw in raw_entries.items():
            try:
                entry = ResponseCacheEntry.from_dict(key, raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                dropped += 1
                continue
            if not entry.is_valid():
                dropped += 1
                continue
            if entry.is_expired(now):
                expired += 1
                continue
            entries[key] = entry

        stats.expired_entries += expired

        with self._lock:
            self._entries = entries
            self._stats = stats
            self._created_at = created_at
            self._refresh_totals()

        if dropped:
            logger.warning(f"Dropped {dropped} invalid response cache entries")
        logger.debug(f"Loaded {len(entries)} response cache entries from {self.path}")

    def _backup_corrupted(self) -> Path | None:
        backup = self.path.with_name(f"{self.path.name}.corrupted.{int(time.time())}")
        try:
            self.path.replace(backup)
        except OSError as e:
            logger.warning(f"Failed to back up corrupted cache {self.path}: {e}")
            return None
        return backup

    def save(self) -> None:
        """Persist the cache atomically.

        Raises:
            OSError: If the file cannot be written
        """
        with self._lock:
            data = {
                "version": self.VERSION,
                "created_at": self._created_at,
                "updated_at": time.time(),
                "entries": {key: entry.to_dict() for key, entry in self._entries.items()},
                "stats": self._stats.to_dict(),
            }
        atomic_write_json(self.path, data)
        logger.debug(f"Saved {len(data['entries'])} response cache entries")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, key: str) -> ResponseCacheEntry | None:
        """Return the entry for ``key`` or None on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired():
                del self._entries[key]
                self._stats.expired_entries += 1
                self._refresh_totals()
                entry = None

            self._stats.record_lookup(entry is not None)
            if entry is None:
                return None

            entry.access_count += 1
            self._entries.move_to_end(key)
            return entry

    def put(
        self,
        key: str,
        response: dict[str, Any],
        request: CacheKeyRequest | None = None,
    ) -> ResponseCacheEntry:
        """Store a response, replacing any entry with the same key."""
        payload = json.dumps(response, sort_keys=True, ensure_ascii=False)
        now = time.time()
        entry = ResponseCacheEntry(
            key=key,
            response=response,
            created_at=now,
            size_bytes=len(payload.encode("utf-8")),
            expires_at=now + self.ttl_seconds if self.ttl_seconds else None,
            checksum=_checksum(response),
            request=request.to_dict() if request is not None else None,
        )

        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug(f"Evicted response cache entry {evicted_key[:12]}")
            self._refresh_totals()
        return entry

    def has(self, key: str) -> bool:
        """Check for a live entry without touching statistics."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = time.time()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats.expired_entries += len(expired)
            self._refresh_totals()
        if expired:
            logger.info(f"Removed {len(expired)} expired response cache entries")
        return len(expired)

    def clear(self) -> None:
        """Drop all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._stats = CacheStats()
            self._created_at = time.time()

    def stats(self) -> CacheStats:
        """Snapshot of the current statistics."""
        with self._lock:
            return CacheStats.from_dict(self._stats.to_dict())

    def _refresh_totals(self) -> None:
        self._stats.total_entries = len(self._entries)
        self._stats.total_size_bytes = sum(e.size_bytes for e in self._entries.values())
