"""
Persistence operations for activities and their zone enrichment.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from activity_api.models import Activity, ActivityZone, ZoneBucket

from .database import DatabaseManager, PersistenceError
from .models import ActivityRecord, ActivityZoneRecord, ZoneBucketRecord, utcnow

logger = logging.getLogger(__name__)


def _to_storage_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_storage_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _null_if_zero(value):
    # Zero and empty values are stored as NULL (absent).
    if value is None or value == 0 or value == "":
        return None
    return value


@dataclass
class ActivityStats:
    total_activities: int
    with_zones: int
    without_zones: int
    newest_start_date: Optional[datetime] = None
    oldest_start_date: Optional[datetime] = None


class ActivityRepository:
    """Reads and writes activities through a DatabaseManager.

    Each public write runs in its own transaction; failures surface as
    PersistenceError with the previous state left intact.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def upsert(self, activity: Activity) -> None:
        """Insert or update one activity keyed by its external id.

        Every column is overwritten with the fetched values and ``updated_at``
        is refreshed. Zone data and its checked marker are left alone.
        """
        try:
            with self.db.session_scope() as session:
                record = ActivityRecord.get_by_id(session, activity.id)
                if record is None:
                    record = ActivityRecord(id=activity.id)
                    session.add(record)
                self._apply(record, activity)
                record.updated_at = utcnow()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to save activity {activity.id} ({activity.name}): {e}", e
            ) from e

    @staticmethod
    def _apply(record: ActivityRecord, activity: Activity) -> None:
        record.name = activity.name
        record.distance = _null_if_zero(activity.distance)
        record.moving_time = _null_if_zero(activity.moving_time)
        record.elapsed_time = _null_if_zero(activity.elapsed_time)
        record.total_elevation_gain = _null_if_zero(activity.total_elevation_gain)
        record.type = _null_if_zero(activity.type)
        record.sport_type = _null_if_zero(activity.sport_type)
        record.start_date = _to_storage_time(activity.start_date)
        record.start_date_local = _to_storage_time(activity.start_date_local)
        record.timezone = _null_if_zero(activity.timezone)
        record.average_speed = _null_if_zero(activity.average_speed)
        record.max_speed = _null_if_zero(activity.max_speed)
        record.average_cadence = _null_if_zero(activity.average_cadence)
        record.average_heartrate = _null_if_zero(activity.average_heartrate)
        record.max_heartrate = _null_if_zero(activity.max_heartrate)
        record.calories = _null_if_zero(activity.kilojoules)

    def get_activity(self, activity_id: int) -> Optional[ActivityRecord]:
        with self.db.session_scope() as session:
            record = ActivityRecord.get_by_id(session, activity_id)
            if record is not None:
                session.expunge(record)
            return record

    def max_persisted_timestamp(self, record_class=ActivityRecord) -> Optional[datetime]:
        """Most recent ``start_date`` stored for ``record_class`` as aware UTC, or None."""
        with self.db.session_scope() as session:
            latest = record_class.latest_start_date(session)
        return _from_storage_time(latest)

    def _lacking_enrichment_filter(self):
        return (ActivityRecord.zones_checked_at.is_(None)) & (~ActivityRecord.zones.any())

    def backlog_lacking_enrichment(self, limit: int) -> List[int]:
        """Ids of activities without zone data, newest first."""
        with self.db.session_scope() as session:
            rows = (
                session.query(ActivityRecord.id)
                .filter(self._lacking_enrichment_filter())
                .order_by(ActivityRecord.start_date.desc(), ActivityRecord.id.desc())
                .limit(limit)
                .all()
            )
        return [row[0] for row in rows]

    def count_lacking_enrichment(self) -> int:
        with self.db.session_scope() as session:
            return (
                session.query(func.count(ActivityRecord.id))
                .filter(self._lacking_enrichment_filter())
                .scalar()
            )

    def count_activities(self) -> int:
        with self.db.session_scope() as session:
            return session.query(func.count(ActivityRecord.id)).scalar()

    def replace_enrichment(self, activity_id: int, zones: List[ActivityZone]) -> None:
        """Atomically replace every zone group and bucket of an activity.

        An empty ``zones`` list clears existing data and marks the activity
        as checked so it leaves the backlog.
        """
        try:
            with self.db.session_scope() as session:
                activity = ActivityRecord.get_by_id(session, activity_id)
                if activity is None:
                    raise PersistenceError(f"Activity {activity_id} does not exist")

                activity.zones.clear()
                # Old rows must be gone before inserting rows with the same zone_type
                session.flush()

                for zone in zones:
                    zone_record = ActivityZoneRecord(
                        zone_type=zone.zone_type,
                        sensor_based=zone.sensor_based,
                    )
                    zone_record.buckets = [
                        ZoneBucketRecord(
                            zone_number=bucket.index,
                            min_value=bucket.range_min,
                            max_value=bucket.range_max,
                            time_seconds=bucket.measure,
                        )
                        for bucket in zone.buckets
                    ]
                    activity.zones.append(zone_record)

                activity.zones_checked_at = utcnow()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to replace zones for activity {activity_id}: {e}", e
            ) from e

        logger.debug(f"Stored {len(zones)} zone groups for activity {activity_id}")

    def get_zones(self, activity_id: int) -> List[ActivityZone]:
        with self.db.session_scope() as session:
            records = ActivityZoneRecord.for_activity(session, activity_id)
            return [
                ActivityZone(
                    zone_type=record.zone_type,
                    sensor_based=bool(record.sensor_based),
                    buckets=[
                        ZoneBucket(
                            index=bucket.zone_number,
                            range_min=bucket.min_value,
                            range_max=bucket.max_value,
                            measure=bucket.time_seconds,
                        )
                        for bucket in record.buckets
                    ],
                )
                for record in records
            ]

    def stats(self) -> ActivityStats:
        with self.db.session_scope() as session:
            total, newest, oldest = session.query(
                func.count(ActivityRecord.id),
                func.max(ActivityRecord.start_date),
                func.min(ActivityRecord.start_date),
            ).one()
            with_zones = (
                session.query(func.count(func.distinct(ActivityZoneRecord.activity_id))).scalar()
            )
        return ActivityStats(
            total_activities=total or 0,
            with_zones=with_zones or 0,
            without_zones=(total or 0) - (with_zones or 0),
            newest_start_date=_from_storage_time(newest),
            oldest_start_date=_from_storage_time(oldest),
        )
