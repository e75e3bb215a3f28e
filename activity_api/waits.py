"""Cancellable sleeping shared by backoff, quota waits and pacing delays."""

import logging
import threading
from datetime import timedelta
from typing import Optional, Union

from .errors import SyncCancelled

logger = logging.getLogger(__name__)

Duration = Union[float, int, timedelta]


def to_seconds(duration: Duration) -> float:
    """Normalize a duration given as seconds or timedelta."""
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class InterruptibleWait:
    """Races a timer against a shutdown event.

    Every suspension point in the client, the orchestrators and the background
    workers goes through one of these so that setting the shutdown event
    releases all pending waits at once.
    """

    def __init__(self, shutdown_event: Optional[threading.Event] = None):
        self.shutdown_event = shutdown_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.shutdown_event.is_set()

    def check(self) -> None:
        """Raise SyncCancelled if shutdown has been requested."""
        if self.shutdown_event.is_set():
            raise SyncCancelled("shutdown requested")

    def wait(self, duration: Duration, reason: str = "") -> None:
        """Sleep for ``duration`` unless shutdown fires first.

        Raises:
            SyncCancelled: If the shutdown event is set before or during the wait.
        """
        seconds = to_seconds(duration)
        self.check()
        if seconds <= 0:
            return

        if reason:
            logger.debug(f"Waiting {seconds:.1f}s ({reason})")

        if self.shutdown_event.wait(seconds):
            raise SyncCancelled(f"shutdown requested while waiting ({reason or 'sleep'})")

    def cancel(self) -> None:
        """Signal shutdown to every holder of the event."""
        self.shutdown_event.set()
