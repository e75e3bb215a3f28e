"""Client toolkit for a rate-limited activity API.

Components:
    - ActivityClient: HTTP client with quota-aware retry and backoff
    - QuotaTracker: Shared 15-minute and daily quota state parsed from headers
    - RetryPolicy: Retry classification and backoff strategy
    - InterruptibleWait: Cancellable sleep shared by every wait
    - ClientConfig: Validated client configuration
"""

from .auth import TokenSet, is_token_expired, refresh_access_token
from .client import ActivityClient, StaticTokenProvider
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
from .models import Activity, ActivityZone, FetchPage, PageResult, ZoneBucket
from .quota import QuotaSnapshot, QuotaTracker, QuotaWindow, WindowKind
from .retry import RetryCategory, RetryDecision, RetryPolicy, RetryState
from .waits import InterruptibleWait

__version__ = "0.1.0"

__all__ = [
    # Client
    "ActivityClient",
    "StaticTokenProvider",
    "ClientConfig",
    # Quota and retry
    "QuotaTracker",
    "QuotaSnapshot",
    "QuotaWindow",
    "WindowKind",
    "RetryPolicy",
    "RetryDecision",
    "RetryCategory",
    "RetryState",
    "InterruptibleWait",
    # Data objects
    "Activity",
    "ActivityZone",
    "ZoneBucket",
    "FetchPage",
    "PageResult",
    # Credentials
    "TokenSet",
    "is_token_expired",
    "refresh_access_token",
    # Exception types
    "ActivityAPIError",
    "TransientNetworkError",
    "ServerError",
    "RateLimitedError",
    "FeatureUnavailableError",
    "AuthenticationError",
    "UnexpectedStatusError",
    "InvalidResponseError",
    "CredentialsUnavailableError",
    "SyncCancelled",
]
