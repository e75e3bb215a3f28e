"""
Database models for activity sync.

Timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Column, DateTime, Float,
    ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
)
from sqlalchemy.orm import Session, declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ActivityRecord(Base):
    """One activity mirrored from the API, keyed by its external id."""

    __tablename__ = "activities"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    name = Column(Text, nullable=False)
    distance = Column(Float, nullable=True)
    moving_time = Column(Integer, nullable=True)
    elapsed_time = Column(Integer, nullable=True)
    total_elevation_gain = Column(Float, nullable=True)
    type = Column(String(50), nullable=True)
    sport_type = Column(String(50), nullable=True)
    start_date = Column(DateTime, nullable=True)
    start_date_local = Column(DateTime, nullable=True)
    timezone = Column(String(100), nullable=True)
    average_speed = Column(Float, nullable=True)
    max_speed = Column(Float, nullable=True)
    average_cadence = Column(Float, nullable=True)
    average_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    calories = Column(Float, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    # Set once zones have been fetched, including when there were none
    zones_checked_at = Column(DateTime, nullable=True)

    zones = relationship(
        "ActivityZoneRecord",
        back_populates="activity",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_activities_start_date", "start_date"),
        Index("ix_activities_type", "type"),
        Index("ix_activities_sport_type", "sport_type"),
        Index("ix_activities_type_start_date", "type", "start_date"),
        Index("ix_activities_zones_checked_at", "zones_checked_at"),
    )

    def __repr__(self):
        return f"<ActivityRecord(id={self.id}, name='{self.name}', start_date={self.start_date})>"

    @classmethod
    def get_by_id(cls, session: Session, activity_id: int) -> Optional["ActivityRecord"]:
        return session.get(cls, activity_id)

    @classmethod
    def latest_start_date(cls, session: Session) -> Optional[datetime]:
        return session.query(func.max(cls.start_date)).scalar()


class ActivityZoneRecord(Base):
    """Zone distribution of one type (heartrate or power) for an activity."""

    __tablename__ = "activity_zones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    activity_id = Column(
        BigInteger, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )
    zone_type = Column(String(20), nullable=False)
    sensor_based = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    activity = relationship("ActivityRecord", back_populates="zones")
    buckets = relationship(
        "ZoneBucketRecord",
        back_populates="zone",
        cascade="all, delete-orphan",
        order_by="ZoneBucketRecord.zone_number",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("activity_id", "zone_type", name="uq_activity_zones_activity_type"),
        Index("ix_activity_zones_activity_id", "activity_id"),
        Index("ix_activity_zones_type", "zone_type"),
    )

    def __repr__(self):
        return f"<ActivityZoneRecord(activity_id={self.activity_id}, zone_type='{self.zone_type}')>"

    @classmethod
    def for_activity(cls, session: Session, activity_id: int) -> List["ActivityZoneRecord"]:
        return (
            session.query(cls)
            .filter(cls.activity_id == activity_id)
            .order_by(cls.zone_type)
            .all()
        )


class ZoneBucketRecord(Base):
    """Time spent in one zone range. ``max_value`` is -1 for the open top bucket."""

    __tablename__ = "zone_buckets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    activity_zone_id = Column(
        Integer, ForeignKey("activity_zones.id", ondelete="CASCADE"), nullable=False
    )
    zone_number = Column(Integer, nullable=False)
    min_value = Column(Integer, nullable=False)
    max_value = Column(Integer, nullable=False)
    time_seconds = Column(Integer, nullable=False)

    zone = relationship("ActivityZoneRecord", back_populates="buckets")

    __table_args__ = (
        Index("ix_zone_buckets_zone_id", "activity_zone_id"),
    )

    def __repr__(self):
        return (f"<ZoneBucketRecord(zone_number={self.zone_number}, "
                f"range={self.min_value}..{self.max_value}, time={self.time_seconds})>")


class AuthConfigRecord(Base):
    """Singleton row holding client credentials and the current token set."""

    __tablename__ = "auth_config"

    id = Column(Integer, primary_key=True, default=1)
    client_id = Column(Text, nullable=False)
    client_secret = Column(Text, nullable=False)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_auth_config_singleton"),
    )

    def __repr__(self):
        return f"<AuthConfigRecord(client_id='{self.client_id}', expires_at={self.expires_at})>"

    @classmethod
    def load(cls, session: Session) -> Optional["AuthConfigRecord"]:
        return session.get(cls, 1)
