"""Tests for batched zone enrichment."""

from unittest.mock import Mock

import pytest

from activity_api.errors import (
    AuthenticationError,
    FeatureUnavailableError,
    RateLimitedError,
    ServerError,
)
from activity_api.models import Activity, ActivityZone
from activity_api.quota import QuotaTracker
from activity_store.config import EnrichmentConfig
from activity_store.database import PersistenceError
from activity_store.enrichment import (
    EnrichmentBatchOrchestrator,
    EnrichmentState,
    StopReason,
)

from conftest import activity_payload, quota_headers, zones_payload

pytestmark = pytest.mark.unit


def hr_zones():
    return [ActivityZone.from_api(zones_payload()[0])]


@pytest.fixture
def stored_activities(repository):
    """Five stored activities; id 5 is the newest."""
    for i in range(1, 6):
        repository.upsert(Activity.from_api(activity_payload(i, start=f"2024-01-1{i}T07:00:00Z")))
    return repository


@pytest.fixture
def zone_client():
    client = Mock()
    client.fetch_activity_zones.return_value = hr_zones()
    return client


def make_orchestrator(client, repository, waiter, tracker=None, **config):
    return EnrichmentBatchOrchestrator(
        client,
        repository,
        quota_tracker=tracker or QuotaTracker(),
        waiter=waiter,
        config=EnrichmentConfig(**config),
    )


class TestBatch:
    """Test a single enrichment run."""

    def test_processes_backlog_newest_first(self, stored_activities, zone_client, waiter):
        orchestrator = make_orchestrator(zone_client, stored_activities, waiter, batch_size=3)

        result = orchestrator.run()

        assert result.synced == 3
        assert result.stop_reason is StopReason.BATCH_COMPLETE
        assert result.state is EnrichmentState.DONE
        assert [c.args[0] for c in zone_client.fetch_activity_zones.call_args_list] == [5, 4, 3]
        assert stored_activities.backlog_lacking_enrichment(10) == [2, 1]
        assert orchestrator.state is EnrichmentState.IDLE

    def test_pacing_between_items(self, stored_activities, zone_client, waiter):
        make_orchestrator(zone_client, stored_activities, waiter, batch_size=3, pacing_delay=0.1).run()
        assert waiter.waits == [0.1, 0.1]

    def test_empty_backlog(self, repository, zone_client, waiter):
        result = make_orchestrator(zone_client, repository, waiter).run()

        assert result.stop_reason is StopReason.BACKLOG_EMPTY
        assert result.synced == 0
        zone_client.fetch_activity_zones.assert_not_called()

    def test_no_zone_data_marks_checked(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.return_value = []

        result = make_orchestrator(zone_client, stored_activities, waiter, batch_size=2).run()

        assert result.synced == 2
        assert stored_activities.count_lacking_enrichment() == 3
        assert stored_activities.get_zones(5) == []

    def test_item_error_is_skipped(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = [
            ServerError("boom", status_code=500),
            hr_zones(),
        ]

        result = make_orchestrator(zone_client, stored_activities, waiter, batch_size=2).run()

        assert result.skipped == 1
        assert result.synced == 1
        assert stored_activities.backlog_lacking_enrichment(10) == [5, 3, 2, 1]

    def test_persistence_error_is_skipped(self, zone_client, waiter):
        repository = Mock()
        repository.backlog_lacking_enrichment.return_value = [10, 11]
        repository.replace_enrichment.side_effect = [PersistenceError("locked"), None]

        result = make_orchestrator(zone_client, repository, waiter).run()

        assert result.skipped == 1
        assert result.synced == 1

    def test_authentication_error_propagates(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = AuthenticationError("revoked", status_code=401)

        orchestrator = make_orchestrator(zone_client, stored_activities, waiter)
        with pytest.raises(AuthenticationError):
            orchestrator.run()
        assert orchestrator.state is EnrichmentState.IDLE


class TestRateLimits:
    """Test the consecutive rate limit breaker."""

    def test_stops_after_three_consecutive_rate_limits(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = RateLimitedError(retry_after=30)
        orchestrator = make_orchestrator(zone_client, stored_activities, waiter)

        result = orchestrator.run()

        assert result.stop_reason is StopReason.RATE_LIMITED
        assert result.synced == 0
        assert zone_client.fetch_activity_zones.call_count == 3
        # Same item retried after each wait
        assert {c.args[0] for c in zone_client.fetch_activity_zones.call_args_list} == {5}
        assert waiter.waits == [30.0, 30.0]

    def test_next_run_unaffected(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = RateLimitedError(retry_after=30)
        orchestrator = make_orchestrator(zone_client, stored_activities, waiter, batch_size=2)
        orchestrator.run()

        zone_client.fetch_activity_zones.side_effect = None
        zone_client.fetch_activity_zones.return_value = hr_zones()
        result = orchestrator.run()

        assert result.stop_reason is StopReason.BATCH_COMPLETE
        assert result.synced == 2

    def test_rate_limit_counter_resets_on_success(self, stored_activities, zone_client, waiter):
        limited = RateLimitedError(retry_after=1)
        zone_client.fetch_activity_zones.side_effect = [
            limited, limited, hr_zones(), limited, limited, hr_zones(),
        ]

        result = make_orchestrator(zone_client, stored_activities, waiter, batch_size=2).run()

        assert result.synced == 2
        assert result.stop_reason is StopReason.BATCH_COMPLETE

    def test_rate_limit_wait_is_capped(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = [
            RateLimitedError(retry_after=5000), hr_zones(),
        ]

        make_orchestrator(zone_client, stored_activities, waiter, batch_size=1,
                          max_quota_wait=960.0).run()

        assert waiter.waits == [960.0]


class TestFeatureUnavailable:
    """Test permanent disabling on a subscription error."""

    def test_disables_permanently(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = FeatureUnavailableError()
        orchestrator = make_orchestrator(zone_client, stored_activities, waiter)

        first = orchestrator.run()

        assert first.disabled
        assert first.stop_reason is StopReason.DISABLED
        assert orchestrator.disabled
        assert zone_client.fetch_activity_zones.call_count == 1

        repository = Mock(wraps=stored_activities)
        orchestrator.repository = repository
        for _ in range(3):
            again = orchestrator.run()
            assert again.disabled

        assert zone_client.fetch_activity_zones.call_count == 1
        repository.backlog_lacking_enrichment.assert_not_called()

    def test_run_continuously_stops_when_disabled(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = FeatureUnavailableError()

        result = make_orchestrator(zone_client, stored_activities, waiter, batch_size=1).run_continuously()

        assert result.disabled
        assert result.batches == 1


class TestQuotaAwareness:
    """Test pre-request quota checks."""

    def test_daily_quota_stops_run(self, stored_activities, zone_client, waiter):
        tracker = QuotaTracker()
        tracker.update(quota_headers(short_usage=1, daily_usage=996))

        result = make_orchestrator(zone_client, stored_activities, waiter, tracker).run()

        assert result.stop_reason is StopReason.DAILY_QUOTA
        zone_client.fetch_activity_zones.assert_not_called()

    def test_short_window_wait_then_proceed(self, stored_activities, zone_client, waiter):
        tracker = QuotaTracker()
        tracker.update(quota_headers(short_usage=97))

        def fetch(activity_id):
            # A fresh response after the window reset
            tracker.update(quota_headers(short_usage=1))
            return hr_zones()

        zone_client.fetch_activity_zones.side_effect = fetch

        result = make_orchestrator(zone_client, stored_activities, waiter, tracker, batch_size=2).run()

        assert result.synced == 2
        assert waiter.reasons[0] == "short quota window"
        assert 0 < waiter.waits[0] <= 15 * 60 + 2
        assert waiter.reasons.count("short quota window") == 1

    def test_short_window_too_far_away(self, stored_activities, zone_client, waiter):
        tracker = QuotaTracker()
        tracker.update(quota_headers(short_usage=100))

        result = make_orchestrator(zone_client, stored_activities, waiter, tracker,
                                   max_quota_wait=1.0).run()

        assert result.stop_reason is StopReason.QUOTA_WAIT_TOO_LONG
        zone_client.fetch_activity_zones.assert_not_called()
        assert waiter.waits == []


class TestRunContinuously:
    """Test back-to-back batches."""

    def test_drains_backlog(self, stored_activities, zone_client, waiter):
        orchestrator = make_orchestrator(zone_client, stored_activities, waiter, batch_size=2,
                                         batch_pause=0.5)

        result = orchestrator.run_continuously()

        assert result.synced == 5
        assert result.batches == 3
        assert stored_activities.count_lacking_enrichment() == 0
        assert waiter.waits.count(0.5) == 2

    def test_stops_when_batch_makes_no_progress(self, stored_activities, zone_client, waiter):
        zone_client.fetch_activity_zones.side_effect = ServerError("boom", status_code=500)

        result = make_orchestrator(zone_client, stored_activities, waiter, batch_size=2).run_continuously()

        assert result.batches == 1
        assert result.skipped == 2
