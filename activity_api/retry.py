"""Retry classification and backoff for API requests."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

import requests

from .quota import QuotaTracker, time_until_short_reset

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


class RetryCategory(Enum):
    """Why a request attempt ended the way it did."""
    SUCCESS = "success"
    CANCELLED = "cancelled"
    CONNECTION = "connection"
    FEATURE_UNAVAILABLE = "feature_unavailable"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    AUTH = "auth"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    category: RetryCategory


@dataclass
class RetryState:
    """Bookkeeping for one logical request; discarded once it resolves."""

    attempt: int = 0
    retries: int = 0
    last_decision: Optional[RetryDecision] = None
    last_error: Optional[Exception] = None

    def record(self, decision: RetryDecision, error: Optional[Exception] = None) -> None:
        self.last_decision = decision
        self.last_error = error


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Integer seconds from a Retry-After header, or None."""
    if value is None:
        return None
    try:
        seconds = int(value.strip())
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


class RetryPolicy:
    """Decides whether a failed attempt is retried and how long to wait.

    Rate limited responses wait for the quota window rather than doubling:
    the server only frees capacity at window boundaries.
    """

    def __init__(
        self,
        max_retries: int = 5,
        min_backoff: float = 1.0,
        max_backoff: float = 300.0,
        quota_tracker: Optional[QuotaTracker] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if min_backoff < 0 or max_backoff < min_backoff:
            raise ValueError("backoff bounds must satisfy 0 <= min_backoff <= max_backoff")

        self.max_retries = max_retries
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self.quota_tracker = quota_tracker

    @classmethod
    def from_config(cls, config, quota_tracker: Optional[QuotaTracker] = None) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            min_backoff=config.min_backoff,
            max_backoff=config.max_backoff,
            quota_tracker=quota_tracker,
        )

    def classify(
        self,
        response: Optional[requests.Response] = None,
        error: Optional[BaseException] = None,
        cancelled: bool = False,
    ) -> RetryDecision:
        """Classify the outcome of one attempt.

        Args:
            response: Response received, if any
            error: Transport exception raised instead of a response, if any
            cancelled: Whether the shutdown signal has fired

        Returns:
            RetryDecision with the retry flag and category
        """
        if cancelled:
            return RetryDecision(False, RetryCategory.CANCELLED)

        if error is not None:
            if isinstance(error, CONNECTION_ERRORS):
                return RetryDecision(True, RetryCategory.CONNECTION)
            return RetryDecision(False, RetryCategory.UNEXPECTED)

        if response is None:
            return RetryDecision(False, RetryCategory.UNEXPECTED)

        status = response.status_code
        if status == 402:
            return RetryDecision(False, RetryCategory.FEATURE_UNAVAILABLE)
        if status == 404:
            return RetryDecision(False, RetryCategory.NOT_FOUND)
        if status == 429:
            return RetryDecision(True, RetryCategory.RATE_LIMITED)
        if 500 <= status < 600:
            return RetryDecision(True, RetryCategory.SERVER)
        if 200 <= status < 300:
            return RetryDecision(False, RetryCategory.SUCCESS)
        if status in (401, 403):
            return RetryDecision(False, RetryCategory.AUTH)
        return RetryDecision(False, RetryCategory.UNEXPECTED)

    def backoff(
        self,
        attempt: int,
        response: Optional[requests.Response] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """Seconds to wait before the next attempt.

        Args:
            attempt: Zero-based index of the attempt that just failed
            response: Failed response, if one was received
            now: Clock override for quota window arithmetic

        Returns:
            Delay in seconds
        """
        if response is not None and response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None:
                return float(retry_after)
            return self._time_until_window_reset(now)

        delay = self.min_backoff * (2 ** attempt)
        return min(delay, self.max_backoff)

    def can_retry(self, state: RetryState) -> bool:
        return state.attempt < self.max_retries

    def _time_until_window_reset(self, now: Optional[datetime]) -> float:
        if self.quota_tracker is not None:
            return self.quota_tracker.snapshot(now).time_until_short_reset.total_seconds()
        return time_until_short_reset(now).total_seconds()
