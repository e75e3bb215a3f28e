"""Dual-window quota tracking driven by API rate limit headers.

The API reports two quota pairs on every response:

- ``X-RateLimit-Limit`` / ``X-RateLimit-Usage`` - general limits
- ``X-ReadRateLimit-Limit`` / ``X-ReadRateLimit-Usage`` - read limits (stricter)

Each value is formatted as ``"<15 minute value>,<daily value>"``. Either pair
can trigger throttling, so the tracker keeps the lowest known limit and the
highest reported usage per window.

Short windows reset at 0, 15, 30 and 45 minutes past the hour; the daily
window resets at midnight UTC.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Mapping, Optional, Tuple

from requests.structures import CaseInsensitiveDict

logger = logging.getLogger(__name__)

GENERAL_LIMIT_HEADER = "X-RateLimit-Limit"
GENERAL_USAGE_HEADER = "X-RateLimit-Usage"
READ_LIMIT_HEADER = "X-ReadRateLimit-Limit"
READ_USAGE_HEADER = "X-ReadRateLimit-Usage"

SHORT_WINDOW_MINUTES = 15
DEFAULT_BUFFER = 5
DEFAULT_SAFETY_MARGIN = timedelta(seconds=2)


class WindowKind(Enum):
    """Quota accounting periods."""
    SHORT = "15min"
    DAILY = "daily"


@dataclass(frozen=True)
class QuotaWindow:
    """Limit and usage for one accounting period. A limit of 0 means unknown."""

    kind: WindowKind
    limit: int = 0
    usage: int = 0

    def is_exceeded(self) -> bool:
        return self.limit > 0 and self.usage >= self.limit

    def is_approaching(self, buffer: int = DEFAULT_BUFFER) -> bool:
        if self.limit <= 0:
            return False
        return self.usage >= self.limit - buffer

    def describe(self) -> str:
        return f"{self.usage}/{self.limit}"


@dataclass(frozen=True)
class QuotaSnapshot:
    """Point-in-time view of both windows with derived reset timings."""

    short: QuotaWindow
    daily: QuotaWindow
    time_until_short_reset: timedelta
    time_until_daily_reset: timedelta
    recommended_wait: timedelta = timedelta(0)
    is_rate_limited: bool = False
    buffer: int = DEFAULT_BUFFER
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def short_exceeded(self) -> bool:
        return self.short.is_exceeded()

    @property
    def daily_exceeded(self) -> bool:
        return self.daily.is_exceeded()

    def is_approaching_short_limit(self) -> bool:
        return self.short.is_approaching(self.buffer)

    def is_approaching_daily_limit(self) -> bool:
        return self.daily.is_approaching(self.buffer)

    @property
    def short_usage(self) -> str:
        return self.short.describe()

    @property
    def daily_usage(self) -> str:
        return self.daily.describe()

    def to_dict(self) -> dict:
        return {
            "15min_usage": self.short_usage,
            "daily_usage": self.daily_usage,
            "rate_limited": self.is_rate_limited,
            "recommended_wait_seconds": self.recommended_wait.total_seconds(),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return _utcnow()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def time_until_short_reset(
    now: Optional[datetime] = None,
    safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
) -> timedelta:
    """Time until the next 15 minute boundary, plus a safety margin."""
    now = _as_utc(now)
    next_boundary = (now.minute // SHORT_WINDOW_MINUTES + 1) * SHORT_WINDOW_MINUTES
    minutes_until = next_boundary - now.minute
    wait = (
        timedelta(minutes=minutes_until)
        - timedelta(seconds=now.second, microseconds=now.microsecond)
    )
    return wait + safety_margin


def time_until_daily_reset(
    now: Optional[datetime] = None,
    safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
) -> timedelta:
    """Time until the next midnight UTC, plus a safety margin."""
    now = _as_utc(now)
    midnight = datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)
    return (midnight - now) + safety_margin


def parse_pair(value: Optional[str]) -> Tuple[int, int]:
    """Parse ``"short,daily"`` into integers; missing or bad parts become 0."""
    if not value:
        return 0, 0

    parts = value.split(",")
    parsed = []
    for part in parts[:2]:
        try:
            parsed.append(int(part.strip()))
        except ValueError:
            parsed.append(0)
    while len(parsed) < 2:
        parsed.append(0)
    return parsed[0], parsed[1]


def min_positive(a: int, b: int) -> int:
    """Smaller of two limits, ignoring zero/unset values."""
    if a <= 0:
        return b
    if b <= 0:
        return a
    return min(a, b)


def parse_rate_limit_headers(
    headers: Mapping[str, str],
) -> Tuple[QuotaWindow, QuotaWindow]:
    """Combine the general and read quota pairs into short and daily windows."""
    headers = CaseInsensitiveDict(headers or {})

    general_limit = parse_pair(headers.get(GENERAL_LIMIT_HEADER))
    general_usage = parse_pair(headers.get(GENERAL_USAGE_HEADER))
    read_limit = parse_pair(headers.get(READ_LIMIT_HEADER))
    read_usage = parse_pair(headers.get(READ_USAGE_HEADER))

    short = QuotaWindow(
        kind=WindowKind.SHORT,
        limit=min_positive(general_limit[0], read_limit[0]),
        usage=max(general_usage[0], read_usage[0]),
    )
    daily = QuotaWindow(
        kind=WindowKind.DAILY,
        limit=min_positive(general_limit[1], read_limit[1]),
        usage=max(general_usage[1], read_usage[1]),
    )
    return short, daily


class QuotaTracker:
    """Thread-safe holder of the most recently reported quota state.

    Shared by every task that talks to the API. State is replaced wholesale by
    each response; it is never merged with older readings.
    """

    def __init__(
        self,
        buffer: int = DEFAULT_BUFFER,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
    ):
        self.buffer = buffer
        self.safety_margin = safety_margin
        self._lock = threading.Lock()
        self._short = QuotaWindow(kind=WindowKind.SHORT)
        self._daily = QuotaWindow(kind=WindowKind.DAILY)
        self._rate_limited = False
        self._updated_at: Optional[datetime] = None

    def update(
        self,
        headers: Mapping[str, str],
        now: Optional[datetime] = None,
        status_code: Optional[int] = None,
    ) -> QuotaSnapshot:
        """Replace tracked state from one response's headers."""
        short, daily = parse_rate_limit_headers(headers)
        now = _as_utc(now)

        with self._lock:
            self._short = short
            self._daily = daily
            self._rate_limited = status_code == 429
            self._updated_at = now

        if status_code == 429:
            logger.warning(
                f"Rate limited by API (15min usage {short.describe()}, "
                f"daily usage {daily.describe()})"
            )
        return self.snapshot(now)

    def snapshot(self, now: Optional[datetime] = None) -> QuotaSnapshot:
        """Derive a fresh snapshot with reset timings relative to ``now``."""
        now = _as_utc(now)
        with self._lock:
            short = self._short
            daily = self._daily
            rate_limited = self._rate_limited

        short_reset = time_until_short_reset(now, self.safety_margin)
        daily_reset = time_until_daily_reset(now, self.safety_margin)

        recommended = timedelta(0)
        if short.is_exceeded():
            rate_limited = True
            recommended = short_reset
        elif daily.is_exceeded():
            rate_limited = True
            recommended = daily_reset
        elif short.is_approaching(self.buffer):
            recommended = short_reset
        elif daily.is_approaching(self.buffer):
            recommended = daily_reset

        return QuotaSnapshot(
            short=short,
            daily=daily,
            time_until_short_reset=short_reset,
            time_until_daily_reset=daily_reset,
            recommended_wait=recommended,
            is_rate_limited=rate_limited,
            buffer=self.buffer,
            taken_at=now,
        )

    @property
    def updated_at(self) -> Optional[datetime]:
        with self._lock:
            return self._updated_at

    def reset(self) -> None:
        """Forget all quota readings."""
        with self._lock:
            self._short = QuotaWindow(kind=WindowKind.SHORT)
            self._daily = QuotaWindow(kind=WindowKind.DAILY)
            self._rate_limited = False
            self._updated_at = None
