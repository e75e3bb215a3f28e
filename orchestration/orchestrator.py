"""Wiring of the sync service: database, credentials, client, orchestrators and workers."""

import functools
import logging
import os
from datetime import timedelta
from threading import Event
from typing import List, Optional

import requests

from activity_api.auth import refresh_access_token
from activity_api.client import ActivityClient
from activity_api.errors import ActivityAPIError, CredentialsUnavailableError, SyncCancelled
from activity_api.quota import QuotaTracker
from activity_api.waits import InterruptibleWait
from activity_store.config import AppConfig
from activity_store.database import initialize_database
from activity_store.enrichment import EnrichmentBatchOrchestrator
from activity_store.monitoring import log_database_stats
from activity_store.replication import ReplicationOrchestrator
from activity_store.repository import ActivityRepository
from activity_store.token_storage import TokenStorage

from .scheduler import (
    ActivitySyncer,
    BackgroundWorker,
    TokenRefresher,
    WorkerSupervisor,
    ZoneSyncer,
    sync_once,
)

logger = logging.getLogger(__name__)

CREDENTIAL_ENV = {
    "client_id": "ACTIVITY_SYNC_CLIENT_ID",
    "client_secret": "ACTIVITY_SYNC_CLIENT_SECRET",
    "access_token": "ACTIVITY_SYNC_ACCESS_TOKEN",
    "refresh_token": "ACTIVITY_SYNC_REFRESH_TOKEN",
    "expires_at": "ACTIVITY_SYNC_TOKEN_EXPIRES_AT",
}


class SyncService:
    """Owns every long-lived component and the shared shutdown event."""

    def __init__(
        self,
        config: AppConfig,
        shutdown_event: Optional[Event] = None,
        session: Optional[requests.Session] = None,
        refresher=None,
    ):
        self.config = config
        self.shutdown_event = shutdown_event or Event()
        self.waiter = InterruptibleWait(self.shutdown_event)

        self.db = initialize_database(config.database)
        self.repository = ActivityRepository(self.db)

        if refresher is None:
            refresher = functools.partial(
                refresh_access_token,
                token_url=config.client.token_url,
                timeout=config.client.timeout,
            )
        self.token_storage = TokenStorage(self.db, refresher=refresher)

        self.quota = QuotaTracker(
            buffer=config.client.rate_limit_buffer,
            safety_margin=timedelta(seconds=config.client.reset_safety_margin),
        )
        self.client = ActivityClient(
            self.token_storage,
            config=config.client,
            quota_tracker=self.quota,
            waiter=self.waiter,
            session=session,
        )
        self.replication = ReplicationOrchestrator(self.client, self.repository, self.waiter)
        self.enrichment = EnrichmentBatchOrchestrator(
            self.client,
            self.repository,
            quota_tracker=self.quota,
            waiter=self.waiter,
            config=config.enrichment,
        )

    def seed_credentials_from_env(self) -> bool:
        """Store credentials from ACTIVITY_SYNC_* variables when present.

        Returns:
            True if credentials were found and stored
        """
        values = {key: os.getenv(env) for key, env in CREDENTIAL_ENV.items()}
        if not values["client_id"] or not values["client_secret"]:
            return False

        expires_at = int(values["expires_at"]) if values["expires_at"] else None
        self.token_storage.seed(
            values["client_id"],
            values["client_secret"],
            access_token=values["access_token"],
            refresh_token=values["refresh_token"],
            expires_at=expires_at,
        )
        return True

    def build_workers(self) -> List[BackgroundWorker]:
        scheduler = self.config.scheduler
        workers: List[BackgroundWorker] = [
            TokenRefresher(
                self.token_storage,
                scheduler.token_refresh_interval,
                self.waiter,
                lead=scheduler.token_refresh_lead,
            )
        ]
        workers.append(
            ActivitySyncer(
                self.replication,
                self.client,
                scheduler.sync_interval,
                self.waiter,
                wait_for_quota=self.config.sync.wait_for_quota,
            )
        )
        if self.config.enrichment.enabled:
            workers.append(
                ZoneSyncer(
                    self.enrichment,
                    self.repository,
                    scheduler.sync_interval,
                    self.waiter,
                    start_delay=self.config.enrichment.start_delay,
                )
            )
        return workers

    def run(self) -> int:
        """Initial sync followed by background workers until shutdown."""
        log_database_stats(self.repository)

        if not self.config.sync.enabled:
            logger.info("Running in offline mode (no sync), nothing to schedule")
            return 0

        supervisor = WorkerSupervisor(
            self.build_workers(),
            self.shutdown_event,
            join_timeout=self.config.scheduler.join_timeout,
        )
        # Signals during the initial sync must reach the shared shutdown event
        supervisor.install_signal_handlers()
        try:
            try:
                sync_once(self.replication)
            except SyncCancelled:
                logger.info("Initial sync cancelled")
                return 130
            except (ActivityAPIError, CredentialsUnavailableError) as e:
                logger.error(f"Initial sync failed: {e}; background workers will retry")

            supervisor.run()
        finally:
            supervisor.restore_signal_handlers()
        return 0

    def shutdown(self) -> None:
        self.shutdown_event.set()
        self.client.close()
        self.db.close()
