"""
In-memory cache store with an optional durable mirror.

The in-memory table is authoritative for reads; the durable layer only
backs it up across restarts. The lock guards dictionary operations only and
is never held across network I/O.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from ..exceptions import CacheError
from .core import CacheEntry, utcnow
from .durable import DurableLayer

logger = logging.getLogger("cache.store")


class CacheStore:
    """
    Key-value store mapping a cache key to a timestamped payload.

    - get() never raises; durable read failures degrade to "absent"
    - set() always updates memory; durable write failures raise CacheError
    - keys pinned by an in-flight refresh survive purge_expired()
    """

    def __init__(
        self,
        durable: Optional[DurableLayer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._pins: Dict[str, int] = {}
        self._durable = durable
        self._clock = clock
        self._stats = {
            "reads": 0,
            "writes": 0,
            "durable_errors": 0,
            "purged": 0,
        }

    @property
    def durable(self) -> Optional[DurableLayer]:
        return self._durable

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key, or None when absent."""
        with self._lock:
            self._stats["reads"] += 1
            entry = self._entries.get(key)
        if entry is not None or self._durable is None:
            return entry

        try:
            loaded = self._durable.load(key)
        except CacheError as e:
            self._count_durable_error()
            logger.warning(f"Durable read failed, treating as absent: {e}")
            return None

        if loaded is None:
            return None

        with self._lock:
            # A concurrent set() may have landed first; keep the newer one
            current = self._entries.get(key)
            if current is None or current.created_at < loaded.created_at:
                self._entries[key] = loaded
                current = loaded
        logger.debug(f"Hydrated {key} from durable layer")
        return current

    def set(self, key: str, payload: Any, source_tier: str) -> CacheEntry:
        """
        Replace the entry for key.

        Raises:
            CacheError: durable write failed (the memory write still happened;
                the stored entry is attached as e.entry)
        """
        with self._lock:
            now = self._clock()
            previous = self._entries.get(key)
            if previous is not None and previous.created_at > now:
                now = previous.created_at
            entry = CacheEntry.create(key, payload, source_tier, created_at=now)
            self._entries[key] = entry
            self._stats["writes"] += 1

        if self._durable is not None:
            try:
                self._durable.save(entry)
            except CacheError as e:
                self._count_durable_error()
                logger.warning(f"Durable write failed for {key}: {e}")
                raise CacheError(key, str(e), entry=entry)

        logger.debug(f"Stored {key} [tier={source_tier}, count={entry.item_count}]")
        return entry

    def delete(self, key: str) -> bool:
        """
        Remove an entry.

        Returns:
            True if an entry was found and removed
        """
        with self._lock:
            found = self._entries.pop(key, None) is not None

        if self._durable is not None:
            try:
                self._durable.delete(key)
            except CacheError as e:
                self._count_durable_error()
                logger.warning(f"Durable delete failed for {key}: {e}")
        if found:
            logger.info(f"Invalidated cache: {key}")
        return found

    def list_keys(self, prefix: str = "") -> List[str]:
        """Sorted keys starting with prefix, across memory and durable layers."""
        with self._lock:
            keys = set(self._entries)
        if self._durable is not None:
            try:
                keys.update(self._durable.keys())
            except CacheError as e:
                self._count_durable_error()
                logger.warning(f"Durable listing failed: {e}")
        return sorted(k for k in keys if k.startswith(prefix))

    def purge_expired(self, max_age: Union[timedelta, float]) -> int:
        """
        Remove entries older than max_age, except keys pinned by a refresh.

        Returns:
            Number of entries removed
        """
        max_age_seconds = max_age.total_seconds() if isinstance(max_age, timedelta) else float(max_age)
        now = self._clock()
        removed = set()

        with self._lock:
            for key, entry in list(self._entries.items()):
                if self._pins.get(key):
                    continue
                if entry.age_seconds(now) > max_age_seconds:
                    del self._entries[key]
                    removed.add(key)

        if self._durable is not None:
            try:
                durable_keys = self._durable.keys()
            except CacheError as e:
                self._count_durable_error()
                logger.warning(f"Durable listing failed during purge: {e}")
                durable_keys = []
            for key in durable_keys:
                with self._lock:
                    if self._pins.get(key) or key in self._entries:
                        continue
                try:
                    entry = self._durable.load(key)
                    if entry is not None and entry.age_seconds(now) > max_age_seconds:
                        self._durable.delete(key)
                        removed.add(key)
                except CacheError as e:
                    self._count_durable_error()
                    logger.warning(f"Durable purge skipped {key}: {e}")

        with self._lock:
            self._stats["purged"] += len(removed)
        if removed:
            logger.info(f"Purged {len(removed)} expired cache entries")
        return len(removed)

    @contextmanager
    def pinned(self, key: str) -> Iterator[None]:
        """Protect key from purge_expired() for the duration of the block."""
        with self._lock:
            self._pins[key] = self._pins.get(key, 0) + 1
        try:
            yield
        finally:
            with self._lock:
                remaining = self._pins.get(key, 1) - 1
                if remaining <= 0:
                    self._pins.pop(key, None)
                else:
                    self._pins[key] = remaining

    def is_pinned(self, key: str) -> bool:
        with self._lock:
            return bool(self._pins.get(key))

    def clear(self) -> int:
        """
        Clear all in-memory entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def _count_durable_error(self) -> None:
        with self._lock:
            self._stats["durable_errors"] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "pinned": len(self._pins),
                "durable": type(self._durable).__name__ if self._durable else None,
                **self._stats,
            }
