"""Activity API client with quota-aware retry and backoff."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config_manager import ClientConfig
from .errors import (
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
from .logging_config import TRACE, format_headers
from .models import Activity, ActivityZone, FetchPage, PageResult
from .quota import QuotaSnapshot, QuotaTracker
from .retry import RetryCategory, RetryDecision, RetryPolicy, RetryState, parse_retry_after
from .waits import InterruptibleWait

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[FetchPage], None]


class PooledHTTPAdapter(HTTPAdapter):
    """HTTP adapter sized from client config, with transport retries disabled.

    Retries are owned by RetryPolicy so that every attempt updates the quota
    tracker.
    """

    def __init__(self, config: ClientConfig, *args, **kwargs):
        self.config = config
        kwargs.setdefault("pool_connections", config.pool_connections)
        kwargs.setdefault("pool_maxsize", config.pool_maxsize)
        kwargs["max_retries"] = Retry(total=0, read=False)
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs["block"] = False
        return super().init_poolmanager(*args, **kwargs)


class StaticTokenProvider:
    """Credential collaborator for a fixed access token."""

    def __init__(self, access_token: str):
        self.access_token = access_token

    def valid_access_token(self) -> str:
        if not self.access_token:
            raise CredentialsUnavailableError("no access token configured")
        return self.access_token


class ActivityClient:
    """Thread-safe activity API client.

    The quota tracker may be shared with other clients and background tasks.
    Every response updates it before the retry policy looks at the status.
    """

    def __init__(
        self,
        token_provider: Union[str, Any],
        config: Optional[ClientConfig] = None,
        quota_tracker: Optional[QuotaTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        waiter: Optional[InterruptibleWait] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or ClientConfig()
        if isinstance(token_provider, str):
            token_provider = StaticTokenProvider(token_provider)
        self.token_provider = token_provider

        self.quota = quota_tracker or QuotaTracker(
            buffer=self.config.rate_limit_buffer,
            safety_margin=timedelta(seconds=self.config.reset_safety_margin),
        )
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config, self.quota)
        self.waiter = waiter or InterruptibleWait()

        if session is None:
            session = requests.Session()
            adapter = PooledHTTPAdapter(self.config)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self._session = session
        self._session.headers.update({
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        })

    def _access_token(self) -> str:
        try:
            token = self.token_provider.valid_access_token()
        except CredentialsUnavailableError:
            raise
        except Exception as e:
            raise CredentialsUnavailableError(f"Failed to obtain access token: {e}", e) from e

        if not token:
            raise CredentialsUnavailableError("Credential provider returned an empty token")
        return token

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[requests.Response, RetryState]:
        """Issue a request through the retry loop.

        Returns the final response for success and 404, and raises the mapped
        ActivityAPIError for everything else.
        """
        url = self._url(path)
        state = RetryState()

        while True:
            self.waiter.check()

            headers = {"Authorization": f"Bearer {self._access_token()}"}
            if state.attempt > 0:
                logger.info(f"Retrying {path} (attempt {state.attempt + 1})")
            if logger.isEnabledFor(TRACE):
                sent = dict(self._session.headers)
                sent.update(headers)
                logger.log(TRACE, f"{method} {url} params={params} request headers {format_headers(sent)}")

            try:
                response = self._session.request(
                    method, url, params=params, headers=headers, timeout=self.config.timeout
                )
            except requests.exceptions.RequestException as e:
                decision = self.retry_policy.classify(error=e, cancelled=self.waiter.cancelled)
                state.record(decision, e)
                if decision.category is RetryCategory.CANCELLED:
                    raise SyncCancelled(f"cancelled during {path}") from e
                if not decision.retry:
                    raise ActivityAPIError(f"Request to {path} failed: {e}", original_error=e) from e
                if not self.retry_policy.can_retry(state):
                    raise TransientNetworkError(
                        f"Request to {path} failed after {state.retries} retries: {e}",
                        original_error=e,
                    ) from e
                self._backoff(state, path, None)
                continue

            self.quota.update(response.headers, status_code=response.status_code)

            if logger.isEnabledFor(TRACE):
                logger.log(
                    TRACE,
                    f"{response.status_code} {path} response headers {format_headers(response.headers)}",
                )

            decision = self.retry_policy.classify(response=response, cancelled=self.waiter.cancelled)
            state.record(decision)

            if decision.category is RetryCategory.CANCELLED:
                raise SyncCancelled(f"cancelled during {path}")

            if decision.retry and self.retry_policy.can_retry(state):
                self._backoff(state, path, response)
                continue

            self._raise_for_decision(response, decision, path, state)
            return response, state

    def _backoff(self, state: RetryState, path: str, response: Optional[requests.Response]) -> None:
        delay = self.retry_policy.backoff(state.attempt, response)
        category = state.last_decision.category.value if state.last_decision else "unknown"
        logger.info(
            f"Request to {path} failed ({category}), attempt {state.attempt + 1}; "
            f"backing off {delay:.1f}s"
        )
        self.waiter.wait(delay, reason=f"{category} backoff")
        state.attempt += 1
        state.retries += 1

    def _raise_for_decision(
        self,
        response: requests.Response,
        decision: RetryDecision,
        path: str,
        state: RetryState,
    ) -> None:
        category = decision.category
        status = response.status_code

        if category in (RetryCategory.SUCCESS, RetryCategory.NOT_FOUND):
            return
        if category is RetryCategory.FEATURE_UNAVAILABLE:
            raise FeatureUnavailableError(f"{path} requires a subscription the account lacks")
        if category is RetryCategory.AUTH:
            raise AuthenticationError(f"Authentication failed for {path}", status_code=status)
        if category is RetryCategory.RATE_LIMITED:
            raise RateLimitedError(
                f"Rate limited on {path} after {state.retries} retries",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if category is RetryCategory.SERVER:
            raise ServerError(
                f"Server error {status} on {path} after {state.retries} retries",
                status_code=status,
            )
        raise UnexpectedStatusError(f"Unexpected status code {status} for {path}", status_code=status)

    @staticmethod
    def _decode_list(response: requests.Response, path: str) -> List[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"Invalid JSON response from {path}: {e}",
                status_code=response.status_code,
                original_error=e,
            ) from e
        if data is None:
            return []
        if not isinstance(data, list):
            raise InvalidResponseError(
                f"Expected a JSON array from {path}, got {type(data).__name__}",
                status_code=response.status_code,
            )
        return data

    def fetch_page(self, page: int, after: Optional[Union[datetime, int]] = None) -> PageResult:
        """Fetch one page of the authenticated athlete's activities.

        Args:
            page: 1-based page number
            after: Only return activities that started after this time

        Returns:
            PageResult with the parsed activities and the quota state
        """
        params: Dict[str, Any] = {"page": page, "per_page": self.config.per_page}
        if after is not None:
            params["after"] = int(after.timestamp()) if isinstance(after, datetime) else int(after)

        path = "/athlete/activities"
        response, state = self._request("GET", path, params=params)

        items: List[Activity] = []
        if response.status_code != 404:
            for raw in self._decode_list(response, path):
                try:
                    items.append(Activity.from_api(raw))
                except (TypeError, ValueError) as e:
                    raise InvalidResponseError(
                        f"Malformed activity on page {page}: {e}", original_error=e
                    ) from e

        return PageResult(items=items, quota=self.quota.snapshot(), retried=state.retries > 0)

    def iter_pages(self, after: Optional[Union[datetime, int]] = None) -> Iterator[FetchPage]:
        """Yield pages from page 1 until the first empty page, which is yielded too."""
        page = 1
        cumulative = 0
        while True:
            result = self.fetch_page(page, after=after)
            cumulative += len(result.items)
            yield FetchPage(
                items=result.items,
                page=page,
                cumulative_count=cumulative,
                quota=result.quota,
                retried=result.retried,
            )
            if not result.items:
                return
            page += 1

    def fetch_all(self, progress: Optional[ProgressCallback] = None) -> List[Activity]:
        """Fetch every activity, page by page."""
        return self._collect(self.iter_pages(), progress)

    def fetch_since(
        self,
        since: Optional[datetime],
        progress: Optional[ProgressCallback] = None,
    ) -> List[Activity]:
        """Fetch activities that started after ``since``; all of them when None."""
        return self._collect(self.iter_pages(after=since), progress)

    @staticmethod
    def _collect(pages: Iterator[FetchPage], progress: Optional[ProgressCallback]) -> List[Activity]:
        activities: List[Activity] = []
        for fetched in pages:
            activities.extend(fetched.items)
            if progress:
                progress(fetched)
        return activities

    def fetch_activity_zones(self, activity_id: int) -> List[ActivityZone]:
        """Fetch heart rate and power zone distributions for an activity.

        Returns an empty list when the activity has no zone data (404).

        Raises:
            FeatureUnavailableError: The account lacks the subscription for zones
            RateLimitedError: Still rate limited after every retry
        """
        path = f"/activities/{activity_id}/zones"
        response, _ = self._request("GET", path)
        if response.status_code == 404:
            return []

        zones = []
        for raw in self._decode_list(response, path):
            if not isinstance(raw, dict):
                raise InvalidResponseError(f"Malformed zone entry for activity {activity_id}")
            zones.append(ActivityZone.from_api(raw))
        return zones

    def get_rate_limit(self) -> QuotaSnapshot:
        """Current quota state with reset timings relative to now."""
        return self.quota.snapshot()

    def wait_for_rate_limit(self) -> float:
        """Block until the quota allows more requests.

        Returns:
            Seconds waited (0 when no wait was needed)

        Raises:
            SyncCancelled: If shutdown is requested while waiting
        """
        snapshot = self.get_rate_limit()
        wait = snapshot.recommended_wait.total_seconds()
        if wait <= 0:
            return 0.0

        logger.info(
            f"Waiting {wait:.0f}s for rate limit window to reset "
            f"(15min usage {snapshot.short_usage}, daily usage {snapshot.daily_usage})"
        )
        self.waiter.wait(wait, reason="rate limit window")
        logger.info("Rate limit window reset, resuming")
        return wait

    def close(self):
        """Clean up session resources."""
        if hasattr(self, "_session"):
            self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
