"""
Next-event resolver: which prayer comes next for a given time of day.
Pure and cheap, meant to be called on every display refresh.
"""
from datetime import datetime, time
from typing import Optional, Union

from .schedule import DailyEvent, DailySchedule


def _minute_of(now: Union[datetime, time]) -> time:
    if isinstance(now, datetime):
        now = now.time()
    return now.replace(second=0, microsecond=0)


def next_event(schedule: Optional[DailySchedule], now: Union[datetime, time]) -> Optional[DailyEvent]:
    """Return the first reminder event strictly later than now's minute.

    An event at the current minute is not upcoming (the notifier owns that minute).
    When every event has passed, wraps to the first reminder event (Dawn), meaning
    tomorrow's occurrence; only its label and time of day are needed.
    Returns None when no schedule is loaded.
    """
    if not schedule:
        return None
    current = _minute_of(now)
    candidates = schedule.reminder_events()
    for event in candidates:
        if event.clock_time > current:
            return event
    return candidates[0]


def is_wrapped(event: DailyEvent, now: Union[datetime, time]) -> bool:
    """True when event is tomorrow's occurrence (no event left today)."""
    return event.clock_time <= _minute_of(now)
