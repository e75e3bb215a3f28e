"""Background workers for token refresh, activity sync and zone sync."""

import logging
import signal
import threading
from threading import Event, Thread
from typing import List, Optional

import schedule

from activity_api.errors import SyncCancelled
from activity_api.waits import InterruptibleWait
from activity_store.enrichment import EnrichmentBatchOrchestrator, EnrichmentRunResult
from activity_store.replication import ReplicationOrchestrator, ReplicationResult
from activity_store.repository import ActivityRepository
from activity_store.token_storage import TokenStorage

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """Runs ``run_once`` at start and then on a fixed interval.

    Each worker owns a ``schedule.Scheduler`` and ticks it through the shared
    InterruptibleWait, so setting the shutdown event stops every worker. A
    failing run is logged and the worker keeps its schedule.
    """

    name = "worker"

    def __init__(
        self,
        interval: float,
        waiter: InterruptibleWait,
        start_delay: float = 0.0,
        tick: float = 1.0,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.waiter = waiter
        self.start_delay = start_delay
        self.tick = tick

        self.scheduler = schedule.Scheduler()
        self.runs = 0
        self.failures = 0
        self._schedule_cancelled = False
        self._thread: Optional[Thread] = None

    def run_once(self):
        raise NotImplementedError

    def cancel_schedule(self) -> None:
        """Stop scheduling further runs; the worker thread then exits."""
        self._schedule_cancelled = True
        self.scheduler.clear()

    def _safe_run(self) -> None:
        try:
            self.run_once()
        except SyncCancelled:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"{self.name} run failed: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
        finally:
            self.runs += 1

    def run(self) -> None:
        """Worker loop; returns when shutdown is requested or the schedule is cancelled."""
        logger.info(f"{self.name} started (interval {self.interval:.0f}s)")
        try:
            if self.start_delay > 0:
                self.waiter.wait(self.start_delay, reason=f"{self.name} start delay")

            self._safe_run()
            if not self._schedule_cancelled:
                self.scheduler.every(self.interval).seconds.do(self._safe_run)

            while self.scheduler.jobs:
                self.scheduler.run_pending()
                idle = self.scheduler.idle_seconds
                if idle is None:
                    break
                self.waiter.wait(min(self.tick, max(idle, 0.0)))
        except SyncCancelled:
            pass
        logger.info(f"{self.name} stopped")

    def start(self) -> Thread:
        self._thread = Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread; True when it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()


class TokenRefresher(BackgroundWorker):
    """Refreshes the access token before it expires."""

    name = "token-refresher"

    def __init__(self, storage: TokenStorage, interval: float, waiter: InterruptibleWait,
                 lead: float = 600.0):
        super().__init__(interval, waiter)
        self.storage = storage
        self.lead = lead

    def run_once(self) -> bool:
        return self.storage.refresh_if_expiring(self.lead)


class ActivitySyncer(BackgroundWorker):
    """Periodic delta sync of the activity list."""

    name = "activity-syncer"

    def __init__(self, orchestrator: ReplicationOrchestrator, client, interval: float,
                 waiter: InterruptibleWait, wait_for_quota: bool = True):
        super().__init__(interval, waiter)
        self.orchestrator = orchestrator
        self.client = client
        self.wait_for_quota = wait_for_quota

    def run_once(self) -> ReplicationResult:
        logger.info("Starting activity sync")
        if self.wait_for_quota:
            self.client.wait_for_rate_limit()

        result = self.orchestrator.sync()
        quota = self.client.get_rate_limit()
        usage = f"15min usage {quota.short_usage}, daily usage {quota.daily_usage}"

        if result.error is not None:
            logger.error(f"Activity sync incomplete: {result.error} ({usage})")
        elif not result.records:
            logger.info(f"No new activities to sync ({usage})")
        else:
            logger.info(
                f"Activity sync completed: fetched {len(result.records)}, "
                f"saved {result.persisted} ({usage})"
            )
        return result


class ZoneSyncer(BackgroundWorker):
    """Periodic zone enrichment; stops for good once zones turn out to be unavailable."""

    name = "zone-syncer"

    def __init__(self, orchestrator: EnrichmentBatchOrchestrator, repository: ActivityRepository,
                 interval: float, waiter: InterruptibleWait, start_delay: float = 30.0):
        super().__init__(interval, waiter, start_delay=start_delay)
        self.orchestrator = orchestrator
        self.repository = repository

    def run_once(self) -> Optional[EnrichmentRunResult]:
        if self.orchestrator.disabled:
            logger.debug("Zone sync skipped, zone data unavailable for this account")
            return None

        remaining = self.repository.count_lacking_enrichment()
        if remaining == 0:
            logger.debug("All activities have zones synced")
            return None

        logger.info(f"Starting zone sync ({remaining} activities remaining)")
        result = self.orchestrator.run_continuously()

        if result.disabled:
            logger.warning(
                "Zone sync disabled: the account's subscription does not include zone data"
            )
            self.cancel_schedule()
        else:
            logger.info(
                f"Zone sync finished: {result.synced} synced, {result.skipped} skipped, "
                f"{self.repository.count_lacking_enrichment()} remaining"
            )
        return result


def sync_once(orchestrator: ReplicationOrchestrator) -> ReplicationResult:
    """Initial sync at startup: delta from the newest stored activity, else full."""
    logger.info("Performing initial sync")
    result = orchestrator.sync()
    if result.error is not None:
        logger.error(f"Initial sync incomplete: {result.error}")
    else:
        logger.info(
            f"Initial sync completed: fetched {len(result.records)}, saved {result.persisted}"
        )
    return result


class WorkerSupervisor:
    """Starts workers on their own threads and stops them on shutdown."""

    def __init__(self, workers: List[BackgroundWorker], shutdown_event: Event,
                 join_timeout: float = 10.0):
        self.workers = workers
        self.shutdown_event = shutdown_event
        self.join_timeout = join_timeout
        self._previous_handlers = {}

    def start(self) -> None:
        for worker in self.workers:
            worker.start()
        logger.info(f"Started {len(self.workers)} background workers")

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to the shutdown event."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handlers")
            return

        def _handle(signum, frame):
            logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
            self.shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, _handle)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            if handler is not None:
                signal.signal(signum, handler)
        self._previous_handlers = {}

    def wait(self, poll: float = 1.0) -> None:
        """Block until shutdown is requested."""
        while not self.shutdown_event.is_set():
            self.shutdown_event.wait(poll)

    def stop(self) -> bool:
        """Signal shutdown and join every worker.

        Returns:
            True if all workers exited within the join timeout
        """
        self.shutdown_event.set()
        all_stopped = True
        for worker in self.workers:
            if not worker.join(self.join_timeout):
                all_stopped = False
                logger.warning(f"{worker.name} did not stop within {self.join_timeout}s")
        logger.info("Background workers stopped")
        return all_stopped

    def run(self) -> bool:
        """Start workers and block until shutdown; signal handlers are the caller's."""
        self.start()
        try:
            self.wait()
        finally:
            stopped = self.stop()
        return stopped
