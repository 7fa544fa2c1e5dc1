"""Exponential backoff for lists whose external source keeps failing.

The reconciler never retries a source call itself. The scheduler records
each ExternalSourceError here and skips the list until its backoff
window has passed:

    delay(n) = min(initial * multiplier ** (n - 1), max)

where ``n`` is the number of consecutive failures.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_INITIAL_BACKOFF = 60.0  # seconds
DEFAULT_MAX_BACKOFF = 3600.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Network-related exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)


def compute_backoff(
    failures: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> float:
    """Delay before the next attempt after ``failures`` consecutive failures."""
    if failures <= 0:
        return 0.0
    return min(initial_backoff * backoff_multiplier ** (failures - 1), max_backoff)


@dataclass
class BackoffEntry:
    """Failure streak of one list."""

    failures: int
    retry_at: float
    last_error: str


class BackoffTracker:
    """Thread-safe per-list backoff bookkeeping."""

    def __init__(
        self,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._backoff_multiplier = backoff_multiplier
        self._clock = clock
        self._entries: dict[str, BackoffEntry] = {}
        self._lock = threading.Lock()

    def record_failure(self, list_id: str, error: BaseException) -> float:
        """Extend the failure streak of a list.

        Returns:
            Seconds until the list may be retried.
        """
        with self._lock:
            entry = self._entries.get(list_id)
            failures = entry.failures + 1 if entry else 1
            delay = compute_backoff(
                failures,
                self._initial_backoff,
                self._max_backoff,
                self._backoff_multiplier,
            )
            self._entries[list_id] = BackoffEntry(
                failures=failures,
                retry_at=self._clock() + delay,
                last_error=str(error),
            )

        logger.warning(
            "List %s failed %d time(s) in a row: %s. Retrying in %.1fs",
            list_id,
            failures,
            error,
            delay,
        )
        return delay

    def record_success(self, list_id: str) -> None:
        with self._lock:
            entry = self._entries.pop(list_id, None)
        if entry is not None:
            logger.info("List %s recovered after %d failure(s)", list_id, entry.failures)

    def should_attempt(self, list_id: str) -> bool:
        """Check whether the list's backoff window has passed."""
        with self._lock:
            entry = self._entries.get(list_id)
            return entry is None or self._clock() >= entry.retry_at

    def failures(self, list_id: str) -> int:
        with self._lock:
            entry = self._entries.get(list_id)
            return entry.failures if entry else 0

    def forget(self, list_id: str) -> None:
        with self._lock:
            self._entries.pop(list_id, None)

    def retain(self, list_ids: Iterable[str]) -> int:
        """Drop entries of lists not in ``list_ids``; return the count dropped."""
        keep = set(list_ids)
        with self._lock:
            stale = [list_id for list_id in self._entries if list_id not in keep]
            for list_id in stale:
                del self._entries[list_id]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
