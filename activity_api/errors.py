"""Exception hierarchy for the activity API client."""

from typing import Optional


class ActivityAPIError(Exception):
    """Base exception for activity API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.original_error = original_error


class TransientNetworkError(ActivityAPIError):
    """Connection or transport failure; retried up to the configured bound."""
    pass


class ServerError(ActivityAPIError):
    """5xx response from the API; retried up to the configured bound."""
    pass


class RateLimitedError(ActivityAPIError):
    """429 response that survived every retry."""

    def __init__(
        self,
        message: str = "rate limited",
        status_code: Optional[int] = 429,
        original_error: Optional[Exception] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code, original_error)
        self.retry_after = retry_after


class FeatureUnavailableError(ActivityAPIError):
    """402 response: the account lacks the subscription for this endpoint.

    Terminal. Callers disable the subsystem that triggered it for the rest of
    the process lifetime.
    """

    def __init__(
        self,
        message: str = "subscription required for this endpoint",
        status_code: Optional[int] = 402,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, status_code, original_error)


class AuthenticationError(ActivityAPIError):
    """401/403 response: credentials are invalid or revoked."""
    pass


class UnexpectedStatusError(ActivityAPIError):
    """Non-retryable status code with no dedicated meaning."""
    pass


class InvalidResponseError(ActivityAPIError):
    """Response body could not be decoded."""
    pass


class CredentialsUnavailableError(Exception):
    """No valid access token could be obtained for a request."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class SyncCancelled(Exception):
    """The shared shutdown signal fired while work was pending."""
    pass
