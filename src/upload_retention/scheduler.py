"""
Cleanup Scheduler - periodic retention reconciliation.

Runs one reconcile immediately on start and then one every interval on a
background thread, until stopped. A failing cycle is logged and the loop
keeps going. Only one scheduler should run per directory; nothing here
coordinates between processes.
"""

import logging
import threading
from enum import Enum
from pathlib import Path

from upload_retention.retention.models import ReconcileResult, RetentionPolicy
from upload_retention.retention.scanner import RetentionScanner

logger = logging.getLogger(__name__)


class SchedulerStatus(Enum):
    """Status of the scheduler."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class CleanupScheduler:
    """Reconciles one upload directory on a fixed interval."""

    def __init__(
        self,
        scanner: RetentionScanner,
        directory: Path | str,
        policy: RetentionPolicy | None = None,
        interval_hours: float = 24.0,
    ):
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        self._scanner = scanner
        self._directory = Path(directory)
        self._policy = policy or RetentionPolicy()
        self._interval_seconds = interval_hours * 60 * 60
        self._status = SchedulerStatus.STOPPED
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()
        self.run_count = 0
        self.last_result: ReconcileResult | None = None

    @property
    def status(self) -> SchedulerStatus:
        return self._status

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def run_once(self) -> ReconcileResult:
        """Run one reconcile cycle and record its result."""
        with self._lock:
            result = self._scanner.reconcile(self._directory, self._policy)
            self.run_count += 1
            self.last_result = result
        if result.success:
            logger.info(
                f"Scheduled cleanup of {self._directory}: deleted {result.deleted}, "
                f"kept {result.kept}, freed {result.freed_bytes} bytes"
            )
        else:
            logger.warning(f"Scheduled cleanup of {self._directory} failed: {result.error}")
        return result

    def start(self) -> bool:
        """
        Start the background loop.

        Returns:
            False if the scheduler was already running
        """
        if self._status != SchedulerStatus.STOPPED:
            return False

        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="CleanupScheduler",
            daemon=True,
        )
        self._status = SchedulerStatus.RUNNING
        self._thread.start()
        logger.info(
            f"Cleanup scheduler started for {self._directory} "
            f"(every {self._interval_seconds / 3600:g} hours)"
        )
        return True

    def stop(self, timeout: float = 30.0) -> None:
        """Signal the loop to exit and wait for the current cycle."""
        if self._status == SchedulerStatus.STOPPED:
            return

        self._status = SchedulerStatus.STOPPING
        self._shutdown_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        self._status = SchedulerStatus.STOPPED
        logger.info("Cleanup scheduler stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() is called; returns True once signalled."""
        return self._shutdown_event.wait(timeout)

    def _loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Scheduled cleanup cycle failed")
            self._shutdown_event.wait(self._interval_seconds)
