"""
SQLAlchemy models for provider snapshots: the last fetched schedule per
location and date, and the last fetched calendar per location and period.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, Integer, String

from imsakiyah.core.db import Base


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScheduleRecord(Base):
    """One daily schedule fetch. data is JSON: {kind: "HH:MM"}."""
    __tablename__ = "schedule_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_key = Column(String(64), nullable=False, index=True)
    prayer_date = Column(Date, nullable=False, index=True)
    fetched_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False, index=True)
    data = Column(JSON, nullable=False)


class CalendarRecord(Base):
    """One calendar fetch. period is "YYYY-MM" or "ramadan-<year>"; data is a list of rows."""
    __tablename__ = "calendar_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_key = Column(String(64), nullable=False, index=True)
    period = Column(String(32), nullable=False, index=True)
    fetched_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False, index=True)
    data = Column(JSON, nullable=False)  # [{date, display_date, imsak, fajr, maghrib}]
