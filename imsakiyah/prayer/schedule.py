"""
Schedule model: the six prayer events of one day, the monthly imsakiyah calendar
and the live location. Pure data holders; providers build them from their payloads
through the helpers below, which only validate shape.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Iterable, Iterator, Mapping, Optional, Tuple

from .errors import MalformedSchedule

logger = logging.getLogger(__name__)


class PrayerKind(Enum):
    """The six daily events, in day order."""
    DAWN = "dawn"
    SUNRISE = "sunrise"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"
    SUNSET = "sunset"
    NIGHT = "night"

    @property
    def is_reminder(self) -> bool:
        """Sunrise is informational only."""
        return self is not PrayerKind.SUNRISE


LABELS = {
    "id": {
        PrayerKind.DAWN: "Subuh",
        PrayerKind.SUNRISE: "Terbit",
        PrayerKind.MIDDAY: "Dzuhur",
        PrayerKind.AFTERNOON: "Ashar",
        PrayerKind.SUNSET: "Maghrib",
        PrayerKind.NIGHT: "Isya",
    },
    "en": {
        PrayerKind.DAWN: "Fajr",
        PrayerKind.SUNRISE: "Sunrise",
        PrayerKind.MIDDAY: "Dhuhr",
        PrayerKind.AFTERNOON: "Asr",
        PrayerKind.SUNSET: "Maghrib",
        PrayerKind.NIGHT: "Isha",
    },
}

PLACEHOLDER_LABELS = {
    "id": "Lokasi Anda",
    "en": "Your location",
}

DEFAULT_LOCALE = "id"


def label_for(kind: PrayerKind, locale: str = DEFAULT_LOCALE) -> str:
    return LABELS.get(locale, LABELS[DEFAULT_LOCALE])[kind]


def placeholder_label(locale: str = DEFAULT_LOCALE) -> str:
    return PLACEHOLDER_LABELS.get(locale, PLACEHOLDER_LABELS[DEFAULT_LOCALE])


_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})")


def parse_clock_time(value: str) -> time:
    """Parse the leading HH:MM of a provider time string, e.g. "04:30 (WIB)" -> 04:30."""
    if not isinstance(value, str):
        raise MalformedSchedule(f"Time value is not a string: {value!r}")
    match = _CLOCK_RE.match(value)
    if not match:
        raise MalformedSchedule(f"Invalid time-of-day value: {value!r}")
    try:
        return time(int(match.group(1)), int(match.group(2)))
    except ValueError:
        raise MalformedSchedule(f"Time-of-day out of range: {value!r}")


def format_clock_time(value: time) -> str:
    return value.strftime("%H:%M")


@dataclass(frozen=True)
class DailyEvent:
    kind: PrayerKind
    clock_time: time

    def label(self, locale: str = DEFAULT_LOCALE) -> str:
        return label_for(self.kind, locale)

    @property
    def is_reminder(self) -> bool:
        return self.kind.is_reminder


@dataclass(frozen=True)
class DailySchedule:
    """Six events for one date at one location. Replaced wholesale, never patched."""
    date: date
    events: Tuple[DailyEvent, ...]

    def __post_init__(self):
        kinds = [event.kind for event in self.events]
        if kinds != list(PrayerKind):
            raise MalformedSchedule(
                f"Schedule for {self.date} must hold exactly the six events in order, got {[k.value for k in kinds]}"
            )

    @classmethod
    def from_times(cls, day: date, times: Mapping[PrayerKind, str]) -> "DailySchedule":
        """Build a schedule from provider strings keyed by kind."""
        missing = [kind.value for kind in PrayerKind if kind not in times or times[kind] in (None, "")]
        if missing:
            raise MalformedSchedule(f"Schedule for {day} is missing: {', '.join(missing)}")
        events = tuple(DailyEvent(kind, parse_clock_time(times[kind])) for kind in PrayerKind)
        schedule = cls(day, events)
        if not schedule.is_monotonic():
            # e.g. Isha after midnight at high latitudes; kept, but reminders may be out of order
            logger.warning(f"Schedule for {day} is not in day order: {schedule.as_dict()}")
        return schedule

    def is_monotonic(self) -> bool:
        return all(a.clock_time <= b.clock_time for a, b in zip(self.events, self.events[1:]))

    def event(self, kind: PrayerKind) -> DailyEvent:
        return self.events[list(PrayerKind).index(kind)]

    def reminder_events(self) -> Tuple[DailyEvent, ...]:
        return tuple(event for event in self.events if event.is_reminder)

    def as_dict(self) -> dict:
        return {event.kind.value: format_clock_time(event.clock_time) for event in self.events}

    def __iter__(self) -> Iterator[DailyEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True)
class ImsakiyahDay:
    """One calendar row. display_date is the provider's readable date string."""
    date: date
    display_date: str
    pre_dawn_cutoff: time
    dawn: time
    sunset: time


@dataclass(frozen=True)
class MonthlyCalendar:
    """Calendar rows sorted by date ascending, no duplicate dates."""
    days: Tuple[ImsakiyahDay, ...]

    def __post_init__(self):
        for previous, current in zip(self.days, self.days[1:]):
            if current.date <= previous.date:
                raise MalformedSchedule(
                    f"Calendar rows out of order or duplicated: {previous.date} then {current.date}"
                )

    @classmethod
    def from_days(cls, days: Iterable[ImsakiyahDay]) -> "MonthlyCalendar":
        return cls(tuple(sorted(days, key=lambda day: day.date)))

    @property
    def first_day(self) -> Optional[ImsakiyahDay]:
        return self.days[0] if self.days else None

    def __iter__(self) -> Iterator[ImsakiyahDay]:
        return iter(self.days)

    def __len__(self) -> int:
        return len(self.days)


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    label: Optional[str] = None  # None until reverse-geocoded or chosen

    def __post_init__(self):
        if not (-90 <= self.latitude <= 90) or not (-180 <= self.longitude <= 180):
            raise ValueError("Latitude must be between -90 and 90, longitude between -180 and 180")

    @property
    def key(self) -> str:
        """Rounded coordinates, used for cache and snapshot keys."""
        return f"{self.latitude:.4f},{self.longitude:.4f}"

    def display_label(self, locale: str = DEFAULT_LOCALE) -> str:
        return self.label or placeholder_label(locale)


FALLBACK_LOCATION = Location(-6.2088, 106.8456, "Jakarta")
