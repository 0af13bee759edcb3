"""
Tables SQLite du stockage local de l'appareil (offline-first).

Une table par collection, clé primaire texte. Les points GPS et les listes
sont stockés en JSON ; les horodatages en UTC (voir UTCDateTime).
Ajouter une collection = ajouter une table : create_all ne touche jamais
aux tables existantes.
"""

from datetime import timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, LargeBinary, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

LocalBase = declarative_base()

SCHEMA_VERSION = 2


class UTCDateTime(TypeDecorator):
    """DateTime stocké naïf en UTC (SQLite n'a pas de fuseau), relu avec tzinfo=UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _geo_column(nullable=True):
    return Column(JSON(none_as_null=True), nullable=nullable)


class EventRow(LocalBase):
    __tablename__ = "events"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    training_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, index=True)  # scheduled, active, completed
    location_name = Column(String(255), nullable=False, default="")
    location = _geo_column(nullable=False)
    allowed_location = _geo_column()
    description = Column(Text, nullable=True)
    expected_trainees = Column(Integer, nullable=False, default=0)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=True)
    last_updated = Column(UTCDateTime, nullable=False)
    synced = Column(Boolean, nullable=False, default=False)


class ActivityRow(LocalBase):
    __tablename__ = "activities"

    id = Column(String(64), primary_key=True)
    event_id = Column(String(64), nullable=False, index=True)
    label = Column(Text, nullable=False)
    timestamp = Column(UTCDateTime, nullable=False, index=True)
    location = _geo_column()
    synced = Column(Boolean, nullable=False, default=False)


class TraineeRow(LocalBase):
    __tablename__ = "trainees"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    photo = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    last_seen = Column(UTCDateTime, nullable=True)


class AttendanceRow(LocalBase):
    __tablename__ = "attendance"

    id = Column(String(160), primary_key=True)
    event_id = Column(String(64), nullable=False, index=True)
    trainee_id = Column(String(64), nullable=False, index=True)
    trainee_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    method = Column(String(20), nullable=False, default="manual")  # manual, qr
    timestamp = Column(UTCDateTime, nullable=False)
    synced = Column(Boolean, nullable=False, default=False)


class DailyReportRow(LocalBase):
    __tablename__ = "daily_reports"

    id = Column(String(100), primary_key=True)
    event_id = Column(String(64), nullable=False, index=True)
    day_index = Column(Integer, nullable=False)
    submitted_at = Column(UTCDateTime, nullable=False)
    attendance_count = Column(Integer, nullable=False)
    notes = Column(Text, nullable=False, default="")
    photos = Column(JSON, nullable=False, default=list)
    location = _geo_column(nullable=False)
    is_geofence_valid = Column(Boolean, nullable=False)
    distance_m = Column(Float, nullable=True)
    synced = Column(Boolean, nullable=False, default=False)


class MediaRow(LocalBase):
    __tablename__ = "media"

    id = Column(String(64), primary_key=True)
    event_id = Column(String(64), nullable=False, index=True)
    media_type = Column(String(10), nullable=False)  # photo, video
    content = Column(LargeBinary, nullable=False)
    content_type = Column(String(100), nullable=True)
    thumbnail = Column(LargeBinary, nullable=True)
    timestamp = Column(UTCDateTime, nullable=False, index=True)
    location = _geo_column()
    size_bytes = Column(Integer, nullable=False)
    sync_status = Column(String(10), nullable=False, default="pending", index=True)


class SyncQueueRow(LocalBase):
    __tablename__ = "sync_queue"

    id = Column(String(200), primary_key=True)  # sync-{kind}-{ref_id}
    kind = Column(String(20), nullable=False, index=True)
    ref_id = Column(String(160), nullable=False)
    status = Column(String(10), nullable=False, default="pending", index=True)
    retries = Column(Integer, nullable=False, default=0)
    enqueued_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    next_attempt_at = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    needs_attention = Column(Boolean, nullable=False, default=False)


class SettingRow(LocalBase):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
