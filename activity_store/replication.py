"""
Full and delta replication of the activity list into the local store.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from activity_api.errors import ActivityAPIError, AuthenticationError
from activity_api.models import Activity, FetchPage
from activity_api.waits import InterruptibleWait

from .database import PersistenceError
from .repository import ActivityRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[FetchPage], None]


@dataclass
class ReplicationResult:
    """Outcome of one replication run."""
    records: List[Activity] = field(default_factory=list)
    persisted: int = 0
    failed: int = 0
    pages: int = 0
    cursor: Optional[datetime] = None
    error: Optional[ActivityAPIError] = None

    @property
    def is_delta(self) -> bool:
        return self.cursor is not None

    @property
    def success(self) -> bool:
        return self.error is None


class ReplicationOrchestrator:
    """Pages through the activity list and upserts every record.

    A page that fails after the client's retries ends the page loop; the
    result carries what was fetched so far together with the error.
    """

    def __init__(
        self,
        client,
        repository: ActivityRepository,
        waiter: Optional[InterruptibleWait] = None,
    ):
        self.client = client
        self.repository = repository
        self.waiter = waiter or getattr(client, "waiter", None) or InterruptibleWait()

    def sync(self, progress: Optional[ProgressCallback] = None) -> ReplicationResult:
        """Delta sync from the newest stored activity, or a full sync on an empty store."""
        cursor = self.repository.max_persisted_timestamp()
        if cursor is None:
            logger.info("No stored activities, running full sync")
        else:
            logger.info(f"Syncing activities since {cursor.isoformat()}")
        return self.sync_since(cursor, progress)

    def sync_all(self, progress: Optional[ProgressCallback] = None) -> ReplicationResult:
        return self._run(None, progress)

    def sync_since(
        self,
        cursor: Optional[datetime],
        progress: Optional[ProgressCallback] = None,
    ) -> ReplicationResult:
        if cursor is None:
            return self.sync_all(progress)
        return self._run(cursor, progress)

    def _run(self, cursor: Optional[datetime], progress: Optional[ProgressCallback]) -> ReplicationResult:
        result = ReplicationResult(cursor=cursor)

        try:
            for fetched in self.client.iter_pages(after=cursor):
                result.records.extend(fetched.items)
                result.pages += 1
                self._log_page(fetched)
                if progress:
                    progress(fetched)
        except AuthenticationError:
            raise
        except ActivityAPIError as e:
            result.error = e
            logger.error(
                f"Page fetch failed after {len(result.records)} activities "
                f"({result.pages} pages): {e}"
            )
            if cursor is None:
                # Full listings run newest first; storing part of one would
                # move the cursor past the activities not yet fetched.
                logger.warning("Full sync incomplete, nothing persisted; next run starts over")
                return result

        self._persist(result)
        return result

    def _log_page(self, fetched: FetchPage) -> None:
        level = logging.DEBUG
        if fetched.retried or fetched.quota.is_rate_limited:
            level = logging.INFO
        logger.log(
            level,
            f"Fetched page {fetched.page}: {fetched.item_count} activities "
            f"({fetched.cumulative_count} total, 15min usage {fetched.quota.short_usage}, "
            f"daily usage {fetched.quota.daily_usage}"
            f"{', retried' if fetched.retried else ''})",
        )

    def _persist(self, result: ReplicationResult) -> None:
        total = len(result.records)
        for i, activity in enumerate(result.records, start=1):
            self.waiter.check()
            try:
                self.repository.upsert(activity)
                result.persisted += 1
            except PersistenceError as e:
                result.failed += 1
                logger.error(f"Skipping activity {activity.id}: {e}")
                continue
            logger.debug(f"Saved activity {i}/{total}: {activity.name}")

        if total:
            logger.info(f"Saved {result.persisted}/{total} activities ({result.failed} failed)")
