import json
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import requests
from hijri_converter import Gregorian

from imsakiyah.core.cache_helper import CacheHelper
from .errors import MalformedSchedule, ScheduleUnavailable
from .schedule import (
    DailySchedule,
    ImsakiyahDay,
    Location,
    MonthlyCalendar,
    PrayerKind,
    parse_clock_time,
)

RAMADAN = 9


class PrayerBackend(ABC):
    """Base class for schedule providers"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.cache_helper = CacheHelper(config.get('cache_dir'), "prayer_times")

    @abstractmethod
    def get_daily_schedule(self, day: date, location: Location, force_fetch: bool = False) -> DailySchedule:
        """Get the six events for a date
        Args:
            force_fetch: If True, bypass cache and fetch fresh data
        Raises:
            ScheduleUnavailable, MalformedSchedule
        """
        pass

    @abstractmethod
    def get_monthly_calendar(self, year: int, month: int, location: Location,
                             force_fetch: bool = False) -> MonthlyCalendar:
        """Get the imsakiyah rows of a Gregorian month"""
        pass

    @abstractmethod
    def get_ramadan_calendar(self, today: date, location: Location,
                             force_fetch: bool = False) -> MonthlyCalendar:
        """Get the imsakiyah rows of the current (or next) Ramadan"""
        pass


class AladhanBackend(PrayerBackend):
    """Schedule provider using api.aladhan.com"""

    DEFAULT_BASE_URL = "https://api.aladhan.com/v1"

    TIMING_KEYS = {
        PrayerKind.DAWN: 'Fajr',
        PrayerKind.SUNRISE: 'Sunrise',
        PrayerKind.MIDDAY: 'Dhuhr',
        PrayerKind.AFTERNOON: 'Asr',
        PrayerKind.SUNSET: 'Maghrib',
        PrayerKind.NIGHT: 'Isha',
    }

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_url = config.get('base_url', self.DEFAULT_BASE_URL).rstrip('/')
        self.method = config.get('method', 11)
        self.timeout = config.get('timeout', 10)

    def get_daily_schedule(self, day: date, location: Location, force_fetch: bool = False) -> DailySchedule:
        url = f"{self.base_url}/timings/{day.strftime('%d-%m-%Y')}"
        data = self._get_data(url, location, f"timings_{day:%Y-%m-%d}_{location.key}_{self.method}", force_fetch)
        try:
            timings = data['timings']
            times = {kind: timings.get(key) for kind, key in self.TIMING_KEYS.items()}
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedSchedule(f"Timings payload missing field: {e}")
        schedule = DailySchedule.from_times(day, times)
        self.logger.info(f"Prayer times for {day} at {location.key}: {schedule.as_dict()}")
        return schedule

    def get_monthly_calendar(self, year: int, month: int, location: Location,
                             force_fetch: bool = False) -> MonthlyCalendar:
        url = f"{self.base_url}/calendar/{year}/{month}"
        data = self._get_data(url, location, f"calendar_{year}-{month:02d}_{location.key}_{self.method}", force_fetch)
        return self._parse_calendar(data)

    def get_ramadan_calendar(self, today: date, location: Location,
                             force_fetch: bool = False) -> MonthlyCalendar:
        try:
            hijri = Gregorian(today.year, today.month, today.day).to_hijri()
        except OverflowError as e:
            raise ScheduleUnavailable(f"Cannot convert {today} to the Hijri calendar: {e}")
        # after Ramadan, show the coming one
        hijri_year = hijri.year + 1 if hijri.month > RAMADAN else hijri.year
        url = f"{self.base_url}/hijriCalendar/{hijri_year}/{RAMADAN}"
        data = self._get_data(url, location, f"ramadan_{hijri_year}_{location.key}_{self.method}", force_fetch)
        return self._parse_calendar(data)

    def _get_data(self, url: str, location: Location, cache_key: str, force_fetch: bool) -> Any:
        """Return the payload's `data` member, from the day's cache when possible."""
        if not force_fetch:
            cached = self.cache_helper.get_cached_content(cache_key)
            if cached:
                self.logger.debug(f"Got from cache: {cache_key}")
                try:
                    return json.loads(cached)
                except ValueError as e:
                    self.logger.warning(f"Ignoring unreadable cache entry {cache_key}: {e}")

        params = {
            'latitude': location.latitude,
            'longitude': location.longitude,
            'method': self.method,
        }
        self.logger.info(f"Making API request to {url} with params {params}")
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise ScheduleUnavailable(f"Network error fetching {url}: {e}")
        except ValueError as e:
            raise ScheduleUnavailable(f"Invalid JSON from {url}: {e}")

        if not isinstance(payload, dict) or payload.get('code') != 200:
            status = payload.get('status', 'Unknown') if isinstance(payload, dict) else 'Unknown'
            raise ScheduleUnavailable(f"API error: {status}")
        if 'data' not in payload:
            raise MalformedSchedule("Payload has no data member")

        data = payload['data']
        self.cache_helper.save_to_cache(cache_key, json.dumps(data))
        return data

    def _parse_calendar(self, data: Any) -> MonthlyCalendar:
        if not isinstance(data, list) or not data:
            raise MalformedSchedule("Calendar payload has no rows")
        days: List[ImsakiyahDay] = []
        try:
            for row in data:
                timings = row['timings']
                days.append(ImsakiyahDay(
                    date=datetime.strptime(row['date']['gregorian']['date'], '%d-%m-%Y').date(),
                    display_date=row['date']['readable'],
                    pre_dawn_cutoff=parse_clock_time(timings['Imsak']),
                    dawn=parse_clock_time(timings['Fajr']),
                    sunset=parse_clock_time(timings['Maghrib']),
                ))
        except (KeyError, TypeError) as e:
            raise MalformedSchedule(f"Calendar row missing field: {e}")
        except ValueError as e:
            raise MalformedSchedule(f"Calendar row has an invalid date: {e}")
        calendar = MonthlyCalendar.from_days(days)
        self.logger.info(f"Calendar {calendar.days[0].date} .. {calendar.days[-1].date} ({len(calendar)} days)")
        return calendar

_BACKENDS = {
    "aladhan": AladhanBackend,
}


def get_backend(backend_type: str, config: Dict[str, Any]) -> Optional[PrayerBackend]:
    """Factory: return backend instance for given type."""
    cls = _BACKENDS.get((backend_type or "").lower())
    if not cls:
        return None
    return cls(config)
