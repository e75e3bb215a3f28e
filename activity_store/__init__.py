"""
Activity Store - local persistence and sync orchestration for activity data.

Mirrors activities from the API into a relational database and keeps their
heart rate and power zone distributions current.
"""

__version__ = "0.1.0"

from .config import AppConfig, ConfigManager
from .database import DatabaseError, DatabaseManager, PersistenceError
from .enrichment import (
    EnrichmentBatchOrchestrator,
    EnrichmentRunResult,
    EnrichmentState,
    StopReason,
)
from .models import ActivityRecord, ActivityZoneRecord, AuthConfigRecord, ZoneBucketRecord
from .replication import ReplicationOrchestrator, ReplicationResult
from .repository import ActivityRepository
from .token_storage import TokenStorage

__all__ = [
    "AppConfig",
    "ConfigManager",
    "DatabaseManager",
    "DatabaseError",
    "PersistenceError",
    "ActivityRecord",
    "ActivityZoneRecord",
    "ZoneBucketRecord",
    "AuthConfigRecord",
    "ActivityRepository",
    "ReplicationOrchestrator",
    "ReplicationResult",
    "EnrichmentBatchOrchestrator",
    "EnrichmentRunResult",
    "EnrichmentState",
    "StopReason",
    "TokenStorage",
]
