"""
Imsakiyah day lookup: today's pre-dawn cutoff from a monthly calendar.
"""
import logging
from datetime import date, time
from typing import Optional

from .schedule import ImsakiyahDay, MonthlyCalendar

logger = logging.getLogger(__name__)


def lookup_day(calendar: Optional[MonthlyCalendar], today: date) -> Optional[ImsakiyahDay]:
    """Row whose date equals today; otherwise the calendar's first row.

    An unmatched today usually means the calendar does not cover the current
    month (e.g. a Ramadan calendar outside Ramadan); a representative row is
    returned instead of nothing. None only when the calendar is empty.
    """
    if not calendar:
        return None
    for day in calendar:
        if day.date == today:
            return day
    logger.debug(f"No calendar row for {today}, using first row {calendar.first_day.date}")
    return calendar.first_day


def today_cutoff(calendar: Optional[MonthlyCalendar], today: date) -> Optional[time]:
    day = lookup_day(calendar, today)
    return day.pre_dawn_cutoff if day else None
