"""
Batched zone enrichment for stored activities.

Runs pull a bounded backlog of activities without zone data, newest first,
and fetch zones one activity at a time while watching the shared quota.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from activity_api.errors import (
    ActivityAPIError,
    AuthenticationError,
    FeatureUnavailableError,
    RateLimitedError,
)
from activity_api.quota import QuotaTracker
from activity_api.waits import InterruptibleWait

from .config import EnrichmentConfig
from .database import PersistenceError
from .repository import ActivityRepository

logger = logging.getLogger(__name__)


class EnrichmentState(str, Enum):
    IDLE = "idle"
    FETCHING_BACKLOG = "fetching_backlog"
    PROCESSING_ITEM = "processing_item"
    WAITING_FOR_QUOTA = "waiting_for_quota"
    DONE = "done"
    DISABLED = "disabled"


class StopReason(str, Enum):
    BACKLOG_EMPTY = "backlog_empty"
    BATCH_COMPLETE = "batch_complete"
    DAILY_QUOTA = "daily_quota"
    QUOTA_WAIT_TOO_LONG = "quota_wait_too_long"
    RATE_LIMITED = "rate_limited"
    DISABLED = "disabled"


@dataclass
class EnrichmentRunResult:
    synced: int = 0
    skipped: int = 0
    backlog_size: int = 0
    batches: int = 0
    stop_reason: Optional[StopReason] = None
    error: Optional[ActivityAPIError] = None
    state: EnrichmentState = EnrichmentState.IDLE

    @property
    def disabled(self) -> bool:
        return self.state is EnrichmentState.DISABLED


class EnrichmentBatchOrchestrator:
    """Fetches zone distributions for the enrichment backlog.

    A feature-unavailable response disables the instance for the rest of its
    lifetime; later runs return immediately without touching the repository
    or the network.
    """

    def __init__(
        self,
        client,
        repository: ActivityRepository,
        quota_tracker: Optional[QuotaTracker] = None,
        waiter: Optional[InterruptibleWait] = None,
        config: Optional[EnrichmentConfig] = None,
    ):
        self.client = client
        self.repository = repository
        self.quota = quota_tracker or client.quota
        self.waiter = waiter or InterruptibleWait()
        self.config = config or EnrichmentConfig()
        self._state = EnrichmentState.IDLE

    @property
    def state(self) -> EnrichmentState:
        return self._state

    @property
    def disabled(self) -> bool:
        return self._state is EnrichmentState.DISABLED

    def run(self) -> EnrichmentRunResult:
        """Process one backlog batch."""
        if self.disabled:
            return EnrichmentRunResult(
                stop_reason=StopReason.DISABLED, state=EnrichmentState.DISABLED
            )

        result = EnrichmentRunResult(batches=1)
        try:
            self._process_batch(result)
        finally:
            result.state = EnrichmentState.DISABLED if self.disabled else EnrichmentState.DONE
            if not self.disabled:
                self._state = EnrichmentState.IDLE

        if result.synced or result.skipped:
            logger.info(
                f"Zone batch finished: {result.synced} synced, {result.skipped} skipped "
                f"({result.stop_reason.value if result.stop_reason else 'stopped'})"
            )
        return result

    def _process_batch(self, result: EnrichmentRunResult) -> None:
        self._state = EnrichmentState.FETCHING_BACKLOG
        backlog = self.repository.backlog_lacking_enrichment(self.config.batch_size)
        result.backlog_size = len(backlog)
        if not backlog:
            result.stop_reason = StopReason.BACKLOG_EMPTY
            return

        consecutive_rate_limits = 0
        index = 0
        while index < len(backlog):
            self.waiter.check()
            if not self._await_quota(result):
                return

            activity_id = backlog[index]
            self._state = EnrichmentState.PROCESSING_ITEM
            logger.debug(f"Syncing zones {index + 1}/{len(backlog)} for activity {activity_id}")

            try:
                zones = self.client.fetch_activity_zones(activity_id)
            except FeatureUnavailableError as e:
                self._state = EnrichmentState.DISABLED
                result.stop_reason = StopReason.DISABLED
                result.error = e
                logger.warning(f"Zone data unavailable for this account, disabling zone sync: {e}")
                return
            except RateLimitedError as e:
                consecutive_rate_limits += 1
                if consecutive_rate_limits >= self.config.max_consecutive_rate_limits:
                    result.stop_reason = StopReason.RATE_LIMITED
                    result.error = e
                    logger.warning(
                        f"Stopping zone batch after {consecutive_rate_limits} consecutive "
                        f"rate limits ({result.synced} synced so far)"
                    )
                    return
                self._wait_for_short_window(e)
                continue
            except AuthenticationError:
                raise
            except ActivityAPIError as e:
                consecutive_rate_limits = 0
                result.skipped += 1
                index += 1
                logger.warning(f"Failed to sync zones for activity {activity_id}: {e}")
                continue

            consecutive_rate_limits = 0
            try:
                self.repository.replace_enrichment(activity_id, zones)
            except PersistenceError as e:
                result.skipped += 1
                index += 1
                logger.error(f"Failed to store zones for activity {activity_id}: {e}")
                continue

            result.synced += 1
            index += 1
            if index < len(backlog):
                self.waiter.wait(self.config.pacing_delay)

        result.stop_reason = StopReason.BATCH_COMPLETE

    def _await_quota(self, result: EnrichmentRunResult) -> bool:
        """Hold until the short window has headroom; False ends the run."""
        snapshot = self.quota.snapshot()
        if snapshot.daily_exceeded or snapshot.is_approaching_daily_limit():
            result.stop_reason = StopReason.DAILY_QUOTA
            logger.info(f"Daily quota nearly used ({snapshot.daily_usage}), stopping zone sync")
            return False

        if snapshot.short_exceeded or snapshot.is_approaching_short_limit():
            wait = snapshot.time_until_short_reset.total_seconds()
            if wait > self.config.max_quota_wait:
                result.stop_reason = StopReason.QUOTA_WAIT_TOO_LONG
                logger.info(f"Short window reset is {wait:.0f}s away, stopping zone sync")
                return False

            self._state = EnrichmentState.WAITING_FOR_QUOTA
            logger.info(
                f"15min quota nearly used ({snapshot.short_usage}), waiting {wait:.0f}s"
            )
            # Usage figures stay stale until the next response arrives.
            self.waiter.wait(wait, reason="short quota window")

        return True

    def _wait_for_short_window(self, error: RateLimitedError) -> None:
        if error.retry_after is not None:
            wait = float(error.retry_after)
        else:
            wait = self.quota.snapshot().time_until_short_reset.total_seconds()
        wait = min(wait, self.config.max_quota_wait)

        self._state = EnrichmentState.WAITING_FOR_QUOTA
        logger.info(f"Rate limited fetching zones, waiting {wait:.0f}s before retrying")
        self.waiter.wait(wait, reason="rate limited")

    def run_continuously(self) -> EnrichmentRunResult:
        """Run batches back to back while full batches keep making progress."""
        total = EnrichmentRunResult(batches=0)

        while True:
            result = self.run()
            total.synced += result.synced
            total.skipped += result.skipped
            total.backlog_size += result.backlog_size
            total.batches += result.batches
            total.stop_reason = result.stop_reason
            total.error = result.error
            total.state = result.state

            if result.stop_reason is not StopReason.BATCH_COMPLETE:
                break
            if result.backlog_size < self.config.batch_size or result.synced == 0:
                break
            if self.repository.count_lacking_enrichment() == 0:
                break

            self.waiter.wait(self.config.batch_pause, reason="zone batch pause")

        return total
