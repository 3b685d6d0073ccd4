from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional

import pytest

from imsakiyah.prayer.errors import ScheduleUnavailable
from imsakiyah.prayer.notification import NotificationSink
from imsakiyah.prayer.permission import Permission
from imsakiyah.prayer.schedule import (
    DailySchedule,
    ImsakiyahDay,
    MonthlyCalendar,
    PrayerKind,
)

TODAY = date(2024, 3, 15)

SAMPLE_TIMES = {
    PrayerKind.DAWN: "04:30",
    PrayerKind.SUNRISE: "05:45",
    PrayerKind.MIDDAY: "12:00",
    PrayerKind.AFTERNOON: "15:15",
    PrayerKind.SUNSET: "18:00",
    PrayerKind.NIGHT: "19:15",
}


def make_schedule(day: date = TODAY, **overrides: str) -> DailySchedule:
    times = dict(SAMPLE_TIMES)
    for name, value in overrides.items():
        times[PrayerKind(name)] = value
    return DailySchedule.from_times(day, times)


def make_calendar(year: int = 2024, month: int = 3, days: int = 5) -> MonthlyCalendar:
    return MonthlyCalendar.from_days(
        ImsakiyahDay(
            date=date(year, month, day),
            display_date=date(year, month, day).strftime("%d %b %Y"),
            pre_dawn_cutoff=time(4, 20 - day),
            dawn=time(4, 30 - day),
            sunset=time(18, day),
        )
        for day in range(1, days + 1)
    )


class Clock:
    """Settable clock, callable like datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class ManualTaskManager:
    """TaskManager stand-in: records timers, runs them only when a test asks."""

    def __init__(self):
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.cancelled: List[str] = []

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        self.tasks[name] = {"callback": callback, "delay": delay, "one_time": one_time}

    def cancel_task(self, name: str) -> bool:
        self.cancelled.append(name)
        return self.tasks.pop(name, None) is not None

    def is_scheduled(self, name: str) -> bool:
        return name in self.tasks

    def run(self, name: str) -> None:
        task = self.tasks[name]
        if task["one_time"]:
            del self.tasks[name]
        task["callback"]()

    def run_pending(self, prefix: str = "") -> None:
        for name in [n for n in list(self.tasks) if n.startswith(prefix)]:
            if name in self.tasks:
                self.run(name)

    def get_active_timers(self) -> List[Dict[str, Any]]:
        return [{"name": name, "next_run_at": None} for name in self.tasks]

    def stop(self) -> None:
        self.tasks.clear()


class FakeSink(NotificationSink):
    def __init__(self, supported: bool = True, current: Permission = Permission.UNREQUESTED,
                 answer: Permission = Permission.GRANTED, fail: bool = False):
        super().__init__({})
        self.supported = supported
        self.current = current
        self.answer = answer
        self.fail = fail
        self.requests = 0
        self.shown: List[Dict[str, Any]] = []
        self.closed: List[int] = []

    def is_supported(self) -> bool:
        return self.supported

    def current_permission(self) -> Permission:
        return self.current

    def request(self) -> Permission:
        self.requests += 1
        return self.answer

    def _show(self, title: str, body: str, icon: Optional[str], timeout: int) -> None:
        if self.fail:
            raise RuntimeError("notification daemon not running")
        self.shown.append({"title": title, "body": body, "timeout": timeout})

    def close(self, handle: int) -> None:
        super().close(handle)
        self.closed.append(handle)


class FakeProvider:
    def __init__(self, schedule: Optional[DailySchedule] = None, calendar: Optional[MonthlyCalendar] = None):
        self.schedule = schedule
        self.calendar = calendar
        self.error: Optional[Exception] = None
        self.calls: List[Any] = []

    def get_daily_schedule(self, day, location, force_fetch=False):
        self.calls.append(("schedule", day, location))
        if self.error:
            raise self.error
        return self.schedule if self.schedule is not None else make_schedule(day)

    def get_monthly_calendar(self, year, month, location, force_fetch=False):
        self.calls.append(("calendar", year, month, location))
        if self.error:
            raise self.error
        return self.calendar if self.calendar is not None else make_calendar(year, month)

    def get_ramadan_calendar(self, today, location, force_fetch=False):
        self.calls.append(("ramadan", today, location))
        if self.error:
            raise self.error
        return self.calendar if self.calendar is not None else make_calendar()


@pytest.fixture
def clock():
    return Clock(datetime(2024, 3, 15, 13, 0, 0))


@pytest.fixture
def task_manager():
    return ManualTaskManager()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def schedule():
    return make_schedule()


@pytest.fixture
def failing_provider():
    provider = FakeProvider()
    provider.error = ScheduleUnavailable("Network error fetching timings")
    return provider
