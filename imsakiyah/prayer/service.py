"""
Service layer: save and load provider snapshots from DB, so a failed fetch
after a restart can still show the last known schedule for the same place.
"""
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, select

from imsakiyah.core.db import session_scope
from imsakiyah.prayer.models import CalendarRecord, ScheduleRecord
from imsakiyah.prayer.schedule import (
    DailySchedule,
    ImsakiyahDay,
    Location,
    MonthlyCalendar,
    PrayerKind,
    format_clock_time,
    parse_clock_time,
)


class SnapshotStore:
    """Latest schedule per (location, date) and calendar per (location, period)."""

    def save_schedule(self, location: Location, schedule: DailySchedule) -> None:
        """Replace the snapshot for this location and date."""
        with session_scope() as session:
            session.execute(
                delete(ScheduleRecord).where(
                    ScheduleRecord.location_key == location.key,
                    ScheduleRecord.prayer_date == schedule.date,
                )
            )
            session.add(
                ScheduleRecord(
                    location_key=location.key,
                    prayer_date=schedule.date,
                    data=schedule.as_dict(),
                )
            )

    def load_schedule(self, location: Location, day: date) -> Optional[DailySchedule]:
        with session_scope() as session:
            row = (
                session.execute(
                    select(ScheduleRecord)
                    .where(
                        ScheduleRecord.location_key == location.key,
                        ScheduleRecord.prayer_date == day,
                    )
                    .order_by(ScheduleRecord.fetched_at.desc())
                    .limit(1)
                )
                .scalars().first()
            )
        if row is None:
            return None
        return DailySchedule.from_times(day, {PrayerKind(k): v for k, v in row.data.items()})

    def save_calendar(self, location: Location, period: str, calendar: MonthlyCalendar) -> None:
        rows = [
            {
                "date": day.date.isoformat(),
                "display_date": day.display_date,
                "imsak": format_clock_time(day.pre_dawn_cutoff),
                "fajr": format_clock_time(day.dawn),
                "maghrib": format_clock_time(day.sunset),
            }
            for day in calendar
        ]
        with session_scope() as session:
            session.execute(
                delete(CalendarRecord).where(
                    CalendarRecord.location_key == location.key,
                    CalendarRecord.period == period,
                )
            )
            session.add(CalendarRecord(location_key=location.key, period=period, data=rows))

    def load_calendar(self, location: Location, period: str) -> Optional[MonthlyCalendar]:
        with session_scope() as session:
            row = (
                session.execute(
                    select(CalendarRecord)
                    .where(
                        CalendarRecord.location_key == location.key,
                        CalendarRecord.period == period,
                    )
                    .order_by(CalendarRecord.fetched_at.desc())
                    .limit(1)
                )
                .scalars().first()
            )
        if row is None:
            return None
        return MonthlyCalendar.from_days(
            ImsakiyahDay(
                date=datetime.strptime(item["date"], "%Y-%m-%d").date(),
                display_date=item["display_date"],
                pre_dawn_cutoff=parse_clock_time(item["imsak"]),
                dawn=parse_clock_time(item["fajr"]),
                sunset=parse_clock_time(item["maghrib"]),
            )
            for item in row.data
        )
