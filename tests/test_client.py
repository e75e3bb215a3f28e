"""Tests for the activity API client."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from activity_api.client import ActivityClient, PooledHTTPAdapter, StaticTokenProvider
from activity_api.errors import (
    ActivityAPIError,
    AuthenticationError,
    CredentialsUnavailableError,
    FeatureUnavailableError,
    InvalidResponseError,
    RateLimitedError,
    ServerError,
    SyncCancelled,
    TransientNetworkError,
    UnexpectedStatusError,
)

from conftest import RecordingWait, activity_payload, make_response, quota_headers, zones_payload

pytestmark = pytest.mark.unit


class TestRequestRetries:
    """Test the retry loop around single requests."""

    def test_success_updates_quota(self, api_client, mock_session, quota_tracker):
        mock_session.request.return_value = make_response(
            200, [activity_payload(1)], headers=quota_headers(short_usage=42)
        )

        result = api_client.fetch_page(1)

        assert [a.id for a in result.items] == [1]
        assert not result.retried
        assert quota_tracker.snapshot().short.usage == 42
        assert result.quota.short_usage == "42/100"

    def test_request_parameters(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, [])
        after = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)

        api_client.fetch_page(3, after=after)

        args, kwargs = mock_session.request.call_args
        assert args == ("GET", "https://api.test/v3/athlete/activities")
        assert kwargs["params"] == {"page": 3, "per_page": 2, "after": int(after.timestamp())}
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"
        assert kwargs["timeout"] == 30

    def test_429_twice_then_success(self, api_client, mock_session, waiter):
        mock_session.request.side_effect = [
            make_response(429, headers={"Retry-After": "3"}),
            make_response(429, headers={"Retry-After": "5"}),
            make_response(200, [activity_payload(1)]),
        ]

        result = api_client.fetch_page(1)

        assert mock_session.request.call_count == 3
        assert waiter.waits == [3.0, 5.0]
        assert result.retried
        assert len(result.items) == 1

    def test_server_errors_back_off_exponentially(self, api_client, mock_session, waiter):
        mock_session.request.side_effect = [
            make_response(500),
            make_response(502),
            make_response(200, []),
        ]

        api_client.fetch_page(1)

        assert waiter.waits == [1.0, 2.0]

    def test_server_error_after_retries_exhausted(self, client_config, quota_tracker, waiter, mock_session):
        client_config.max_retries = 2
        client = ActivityClient("t", config=client_config, quota_tracker=quota_tracker,
                                waiter=waiter, session=mock_session)
        mock_session.request.return_value = make_response(503)

        with pytest.raises(ServerError) as exc_info:
            client.fetch_page(1)

        assert exc_info.value.status_code == 503
        assert mock_session.request.call_count == 3

    def test_rate_limited_after_retries_exhausted(self, client_config, quota_tracker, waiter, mock_session):
        client_config.max_retries = 1
        client = ActivityClient("t", config=client_config, quota_tracker=quota_tracker,
                                waiter=waiter, session=mock_session)
        mock_session.request.return_value = make_response(429, headers={"Retry-After": "9"})

        with pytest.raises(RateLimitedError) as exc_info:
            client.fetch_activity_zones(7)

        assert exc_info.value.retry_after == 9
        assert exc_info.value.status_code == 429

    def test_connection_error_retried(self, api_client, mock_session, waiter):
        mock_session.request.side_effect = [
            requests.exceptions.ConnectionError("reset by peer"),
            make_response(200, []),
        ]

        result = api_client.fetch_page(1)

        assert result.items == []
        assert result.retried
        assert waiter.waits == [1.0]

    def test_connection_error_exhausted(self, client_config, quota_tracker, waiter, mock_session):
        client_config.max_retries = 1
        client = ActivityClient("t", config=client_config, quota_tracker=quota_tracker,
                                waiter=waiter, session=mock_session)
        mock_session.request.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(TransientNetworkError):
            client.fetch_page(1)
        assert mock_session.request.call_count == 2

    def test_non_retryable_transport_error(self, api_client, mock_session):
        mock_session.request.side_effect = requests.exceptions.InvalidURL("bad url")

        with pytest.raises(ActivityAPIError):
            api_client.fetch_page(1)
        assert mock_session.request.call_count == 1

    def test_402_not_retried(self, api_client, mock_session, waiter):
        mock_session.request.return_value = make_response(402)

        with pytest.raises(FeatureUnavailableError):
            api_client.fetch_activity_zones(1)

        assert mock_session.request.call_count == 1
        assert waiter.waits == []

    def test_404_not_retried_and_empty(self, api_client, mock_session, waiter):
        mock_session.request.return_value = make_response(404)

        assert api_client.fetch_activity_zones(1) == []
        assert api_client.fetch_page(1).items == []
        assert mock_session.request.call_count == 2
        assert waiter.waits == []

    def test_401_raises_authentication_error(self, api_client, mock_session):
        mock_session.request.return_value = make_response(401)

        with pytest.raises(AuthenticationError):
            api_client.fetch_page(1)
        assert mock_session.request.call_count == 1

    def test_unexpected_status(self, api_client, mock_session):
        mock_session.request.return_value = make_response(400)

        with pytest.raises(UnexpectedStatusError) as exc_info:
            api_client.fetch_page(1)
        assert exc_info.value.status_code == 400

    def test_cancel_during_backoff(self, client_config, quota_tracker, mock_session):
        waiter = RecordingWait(cancel_after=1)
        client = ActivityClient("t", config=client_config, quota_tracker=quota_tracker,
                                waiter=waiter, session=mock_session)
        mock_session.request.return_value = make_response(500)

        with pytest.raises(SyncCancelled):
            client.fetch_page(1)
        assert mock_session.request.call_count == 1

    def test_cancelled_before_request(self, api_client, mock_session, waiter):
        waiter.cancel()

        with pytest.raises(SyncCancelled):
            api_client.fetch_page(1)
        mock_session.request.assert_not_called()


class TestDecoding:
    """Test response body handling."""

    def test_invalid_json(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, json_error=ValueError("bad"))

        with pytest.raises(InvalidResponseError):
            api_client.fetch_page(1)

    def test_non_list_body(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, {"message": "nope"})

        with pytest.raises(InvalidResponseError):
            api_client.fetch_page(1)

    def test_null_body_is_empty(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, None)
        assert api_client.fetch_page(1).items == []

    def test_zones_parsed(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, zones_payload())

        zones = api_client.fetch_activity_zones(99)

        args, _ = mock_session.request.call_args
        assert args[1] == "https://api.test/v3/activities/99/zones"
        assert [z.zone_type for z in zones] == ["heartrate", "power"]
        assert zones[0].sensor_based
        assert [b.index for b in zones[0].buckets] == [1, 2, 3]
        assert zones[0].buckets[2].range_max == -1
        assert zones[1].buckets[0].measure == 2000


class TestPagination:
    """Test page iteration."""

    def test_pages_until_empty(self, api_client, mock_session):
        mock_session.request.side_effect = [
            make_response(200, [activity_payload(4), activity_payload(3)]),
            make_response(200, [activity_payload(2)]),
            make_response(200, []),
        ]
        progress = Mock()

        activities = api_client.fetch_all(progress=progress)

        assert [a.id for a in activities] == [4, 3, 2]
        assert progress.call_count == 3
        pages = [call.args[0] for call in progress.call_args_list]
        assert [p.page for p in pages] == [1, 2, 3]
        assert [p.cumulative_count for p in pages] == [2, 3, 3]
        assert pages[-1].item_count == 0

    def test_fetch_since_passes_cursor(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, [])
        since = datetime(2024, 1, 16, tzinfo=timezone.utc)

        assert api_client.fetch_since(since) == []
        _, kwargs = mock_session.request.call_args
        assert kwargs["params"]["after"] == int(since.timestamp())

    def test_fetch_since_none_fetches_everything(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, [])

        api_client.fetch_since(None)
        _, kwargs = mock_session.request.call_args
        assert "after" not in kwargs["params"]

    def test_page_failure_propagates(self, api_client, mock_session):
        mock_session.request.side_effect = [
            make_response(200, [activity_payload(1)]),
            make_response(401),
        ]

        with pytest.raises(AuthenticationError):
            api_client.fetch_all()


class TestQuotaHelpers:
    """Test rate limit inspection and waiting."""

    def test_wait_for_rate_limit_no_wait(self, api_client, waiter):
        assert api_client.wait_for_rate_limit() == 0.0
        assert waiter.waits == []

    def test_wait_for_rate_limit_waits_for_reset(self, api_client, mock_session, waiter):
        mock_session.request.return_value = make_response(200, [], headers=quota_headers(short_usage=100))
        api_client.fetch_page(1)

        waited = api_client.wait_for_rate_limit()

        assert 0 < waited <= 15 * 60 + 2
        assert len(waiter.waits) == 1

    def test_get_rate_limit(self, api_client, mock_session):
        mock_session.request.return_value = make_response(200, [], headers=quota_headers(daily_usage=500))
        api_client.fetch_page(1)
        assert api_client.get_rate_limit().daily_usage == "500/1000"


class TestCredentials:
    """Test token handling."""

    def test_static_token_provider(self):
        assert StaticTokenProvider("abc").valid_access_token() == "abc"
        with pytest.raises(CredentialsUnavailableError):
            StaticTokenProvider("").valid_access_token()

    def test_provider_failure_wrapped(self, client_config, mock_session, waiter):
        provider = Mock()
        provider.valid_access_token.side_effect = RuntimeError("db locked")
        client = ActivityClient(provider, config=client_config, waiter=waiter, session=mock_session)

        with pytest.raises(CredentialsUnavailableError):
            client.fetch_page(1)
        mock_session.request.assert_not_called()

    def test_token_fetched_per_attempt(self, client_config, mock_session, waiter):
        provider = Mock()
        provider.valid_access_token.side_effect = ["old", "new"]
        client = ActivityClient(provider, config=client_config, waiter=waiter, session=mock_session)
        mock_session.request.side_effect = [make_response(500), make_response(200, [])]

        client.fetch_page(1)

        tokens = [call.kwargs["headers"]["Authorization"] for call in mock_session.request.call_args_list]
        assert tokens == ["Bearer old", "Bearer new"]

    def test_session_headers(self, api_client, mock_session):
        assert mock_session.headers["User-Agent"] == "activity-sync/0.1"
        assert mock_session.headers["Accept"] == "application/json"


class TestAdapter:
    """Test connection pool setup."""

    def test_adapter_disables_transport_retries(self, client_config):
        adapter = PooledHTTPAdapter(client_config)
        assert adapter.max_retries.total == 0

    def test_default_session_mounts_adapter(self, client_config):
        client = ActivityClient("t", config=client_config)
        try:
            assert isinstance(client._session.get_adapter("https://api.test"), PooledHTTPAdapter)
        finally:
            client.close()
