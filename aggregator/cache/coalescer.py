"""
Per-key fetch coalescing.

Concurrent refreshes of the same cache key share one upstream fetch chain:
the first caller runs it, later callers block on an Event and receive the
same result (or the same exception). Different keys never wait on each other.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightFetch:
    """Tracks one in-progress refresh for a cache key."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    waiters: int = 0


class RequestCoalescer:
    """
    Runs at most one fetch per key at a time.

    Usage:
        coalescer = RequestCoalescer(timeout=60)
        result = coalescer.run("roster:nfl", lambda: refresh("nfl"))
    """

    def __init__(self, timeout: float = 60.0):
        """
        Args:
            timeout: Max seconds a joining caller waits for the in-flight fetch
        """
        self._in_flight: Dict[str, InFlightFetch] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._coalesced_total = 0

    def run(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Join the in-flight fetch for key, or start one.

        Raises:
            TimeoutError: a joining caller waited longer than the timeout
                (the initiating fetch keeps running)
            Exception: whatever fetch_fn raised, re-raised in every caller
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiters += 1
                self._coalesced_total += 1
                is_initiator = False
                logger.debug(f"Coalescing refresh for {key} (waiters: {in_flight.waiters})")
            else:
                in_flight = InFlightFetch()
                self._in_flight[key] = in_flight
                is_initiator = True
                logger.debug(f"Initiating refresh for {key}")

        if is_initiator:
            try:
                in_flight.result = fetch_fn()
            except Exception as e:
                in_flight.error = e
            finally:
                with self._lock:
                    self._in_flight.pop(key, None)
                in_flight.done.set()
        elif not in_flight.done.wait(timeout=self._timeout):
            logger.error(f"Timeout waiting for coalesced refresh: {key}")
            raise TimeoutError(f"Refresh for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight fetches."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": sorted(self._in_flight),
                "coalesced_total": self._coalesced_total,
            }
