"""
Background cache maintenance: periodic TTL purge and optional pre-warm.

Runs in a daemon thread against the same store the request path uses.
Keys pinned by an in-flight refresh are skipped by the purge.
"""
import logging
import threading
from datetime import timedelta
from typing import Any, Dict, Optional

from .cache.core import isoformat
from .dispatcher import AggregationDispatcher

logger = logging.getLogger("maintenance")


class MaintenanceLoop:
    """Purges expired entries and, when enabled, force-refreshes declared resources."""

    def __init__(
        self,
        dispatcher: AggregationDispatcher,
        interval_seconds: float,
        purge_max_age: timedelta,
        prewarm: bool = False,
    ):
        self._dispatcher = dispatcher
        self._interval = interval_seconds
        self._purge_max_age = purge_max_age
        self._prewarm = prewarm
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_run: Optional[Dict[str, Any]] = None

    @classmethod
    def from_settings(cls, dispatcher: AggregationDispatcher, settings: Any) -> "MaintenanceLoop":
        return cls(
            dispatcher,
            interval_seconds=settings.maintenance_interval_minutes * 60,
            purge_max_age=timedelta(hours=settings.purge_max_age_hours),
            prewarm=settings.maintenance_prewarm,
        )

    def run_once(self) -> Dict[str, Any]:
        """One maintenance cycle. Returns a summary of what it did."""
        started = self._dispatcher.coordinator.clock()
        logger.info(f"Scheduled maintenance started at {isoformat(started)}")

        removed = self._dispatcher.coordinator.store.purge_expired(self._purge_max_age)
        summary: Dict[str, Any] = {
            "started_at": isoformat(started),
            "purged": removed,
            "refreshed": None,
        }

        if self._prewarm:
            envelope = self._dispatcher.handle("refreshAll")
            failed = [r for r in envelope.data or [] if r.get("status") != 200]
            summary["refreshed"] = {"total": envelope.count, "failed": len(failed)}

        self.last_run = summary
        logger.info(f"Maintenance complete: {summary}")
        return summary

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception as e:
                # keep the loop alive; the next cycle retries
                logger.exception(f"Maintenance cycle failed: {e}")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="cache-maintenance", daemon=True)
        self._thread.start()
        logger.info(f"Maintenance loop started (every {self._interval:.0f}s, prewarm={self._prewarm})")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Maintenance loop stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
