"""Generic periodic task runner on APScheduler.

The first run happens immediately on ``start``, then every ``interval``
seconds. At most one run is in flight; a run that overlaps the next tick
makes APScheduler skip (coalesce) that tick.

``stop`` is cooperative: no run starts after it is called, and a run
already in progress is never interrupted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """Runs ``task`` every ``interval`` seconds until stopped."""

    def __init__(
        self,
        name: str,
        interval: float,
        task: Callable[[], Any],
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            name: Job name (also the APScheduler job ID).
            interval: Seconds between runs.
            task: Unit of work. Exceptions are logged, never propagated.
            scheduler: Shared scheduler to add the job to. When omitted the
                worker owns a BackgroundScheduler of its own.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self._interval = interval
        self._task = task
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._stop_event = threading.Event()
        self._run_lock = threading.Lock()
        self._running = False
        self.run_count = 0
        self.last_error: BaseException | None = None
        self.last_run_at: datetime | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Schedule the job; the first run starts immediately."""
        if self._running:
            return  # Already running

        self._stop_event.clear()
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(timezone=UTC)

        self._scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(seconds=self._interval, timezone=UTC),
            id=self.name,
            name=self.name,
            next_run_time=datetime.now(UTC),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()

        self._running = True
        logger.info("Worker %s started (every %.0fs)", self.name, self._interval)

    def stop(self, wait: bool = False) -> None:
        """Stop scheduling new runs.

        Args:
            wait: Block until a run in progress has finished.
        """
        if not self._running:
            return

        self._stop_event.set()
        scheduler = self._scheduler
        if scheduler is not None:
            if scheduler.get_job(self.name) is not None:
                scheduler.remove_job(self.name)
            if self._owns_scheduler:
                scheduler.shutdown(wait=wait)
                self._scheduler = None
        if wait:
            # Wait for the run in progress, if any
            with self._run_lock:
                pass

        self._running = False
        logger.info("Worker %s stopped", self.name)

    def run_once(self) -> bool:
        """Run the task now in the calling thread.

        Returns:
            True if the task ran and succeeded.
        """
        return self._run(force=True)

    def _run(self, force: bool = False) -> bool:
        if self._stop_event.is_set() and not force:
            logger.debug("Worker %s stopping, skipping run", self.name)
            return False

        with self._run_lock:
            start = time.monotonic()
            self.last_run_at = datetime.now(UTC)
            self.run_count += 1
            try:
                self._task()
            except Exception as e:
                self.last_error = e
                logger.exception("Error during %s run", self.name)
                return False
            self.last_error = None
            logger.debug("Worker %s run finished in %.2fs", self.name, time.monotonic() - start)
            return True
