"""Pytest configuration and shared fixtures for activity sync tests."""

import logging
import os

# Add parent directory to path for imports
import sys
from datetime import datetime, timezone
from typing import List, Optional
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from activity_api.client import ActivityClient
from activity_api.config_manager import ClientConfig
from activity_api.models import Activity
from activity_api.quota import QuotaTracker
from activity_api.waits import InterruptibleWait
from activity_store.config import DatabaseConfig
from activity_store.database import DatabaseManager
from activity_store.repository import ActivityRepository

# Configure test logging
logging.basicConfig(level=logging.DEBUG)


class RecordingWait(InterruptibleWait):
    """InterruptibleWait that records requested waits instead of sleeping.

    With ``cancel_after`` set, the wait with that 1-based index sets the
    shutdown event and raises SyncCancelled like a real interrupted wait.
    """

    def __init__(self, cancel_after: Optional[int] = None):
        super().__init__()
        self.waits: List[float] = []
        self.reasons: List[str] = []
        self.cancel_after = cancel_after

    def wait(self, duration, reason=""):
        self.check()
        seconds = duration.total_seconds() if hasattr(duration, "total_seconds") else float(duration)
        self.waits.append(seconds)
        self.reasons.append(reason)
        if self.cancel_after is not None and len(self.waits) >= self.cancel_after:
            self.cancel()
            self.check()


def make_response(status_code=200, json_data=None, headers=None, json_error=None):
    """Build a Mock shaped like requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.headers = dict(headers or {})
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data
    return response


def quota_headers(short_usage=10, daily_usage=100, short_limit=100, daily_limit=1000):
    return {
        "X-RateLimit-Limit": f"{short_limit},{daily_limit}",
        "X-RateLimit-Usage": f"{short_usage},{daily_usage}",
    }


def activity_payload(activity_id, start="2024-01-15T07:30:00Z", **overrides):
    data = {
        "id": activity_id,
        "name": f"Morning Run {activity_id}",
        "distance": 10000.0,
        "moving_time": 3000,
        "elapsed_time": 3200,
        "total_elevation_gain": 85.5,
        "type": "Run",
        "sport_type": "Run",
        "start_date": start,
        "start_date_local": start.replace("Z", ""),
        "timezone": "(GMT+01:00) Europe/Berlin",
        "average_speed": 3.33,
        "max_speed": 5.1,
        "average_cadence": 86.0,
        "average_heartrate": 148.0,
        "max_heartrate": 176.0,
        "kilojoules": 640.0,
    }
    data.update(overrides)
    return data


def zones_payload():
    return [
        {
            "type": "heartrate",
            "sensor_based": True,
            "distribution_buckets": [
                {"min": 0, "max": 120, "time": 300},
                {"min": 120, "max": 150, "time": 1800},
                {"min": 150, "max": -1, "time": 900},
            ],
        },
        {
            "type": "power",
            "sensor_based": False,
            "distribution_buckets": [
                {"min": 0, "max": 200, "time": 2000.0},
                {"min": 200, "max": -1, "time": 1000.0},
            ],
        },
    ]


@pytest.fixture
def waiter():
    return RecordingWait()


@pytest.fixture
def quota_tracker():
    return QuotaTracker()


@pytest.fixture
def client_config():
    """Client config pointing at a test host."""
    return ClientConfig(
        base_url="https://api.test/v3",
        per_page=2,
        max_retries=5,
        min_backoff=1.0,
        max_backoff=300.0,
    )


@pytest.fixture
def mock_session():
    """Mocked requests.Session; tests set ``request.side_effect``."""
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def api_client(client_config, quota_tracker, waiter, mock_session):
    client = ActivityClient(
        "test-token",
        config=client_config,
        quota_tracker=quota_tracker,
        waiter=waiter,
        session=mock_session,
    )
    yield client
    client.close()


@pytest.fixture
def db_manager():
    """In-memory SQLite database with the schema created."""
    manager = DatabaseManager(DatabaseConfig(url="sqlite://"))
    manager.create_all_tables()
    yield manager
    manager.close()


@pytest.fixture
def repository(db_manager):
    return ActivityRepository(db_manager)


@pytest.fixture
def sample_activities():
    """Three activities, newest first, as the list endpoint returns them."""
    return [
        Activity.from_api(activity_payload(3, start="2024-01-17T07:30:00Z")),
        Activity.from_api(activity_payload(2, start="2024-01-16T07:30:00Z")),
        Activity.from_api(activity_payload(1, start="2024-01-15T07:30:00Z")),
    ]


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 15, 12, 7, 30, tzinfo=timezone.utc)
