"""
Minute-tick notifier: once a minute, compare the wall clock with the active
schedule and raise one reminder per event per calendar day.

Best effort only. A reminder fires when a tick lands inside the event's minute,
which requires the process to be running through that minute.
"""
import logging
import threading
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from .schedule import DEFAULT_LOCALE, DailyEvent, DailySchedule, PrayerKind

TICK_SECONDS = 60
# ticks land just after the minute boundary
TICK_MARGIN = 0.5

REMINDER_TEXT = {
    "id": ("Waktu {label}", "Sekarang waktu {label} untuk wilayah {city}"),
    "en": ("{label} time", "It is now time for {label} in {city}"),
}


def reminder_text(event: DailyEvent, city: str, locale: str = DEFAULT_LOCALE) -> Tuple[str, str]:
    """Title and body of the reminder for an event."""
    title, body = REMINDER_TEXT.get(locale, REMINDER_TEXT[DEFAULT_LOCALE])
    label = event.label(locale)
    return title.format(label=label), body.format(label=label, city=city)


class MinuteTickNotifier:
    TASK_NAME = "prayer_reminder_tick"

    def __init__(
        self,
        task_manager,
        sink,
        clock: Callable[[], datetime] = datetime.now,
        locale: str = DEFAULT_LOCALE,
        display_seconds: int = 30,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.task_manager = task_manager
        self.sink = sink
        self.clock = clock
        self.locale = locale
        self.display_seconds = display_seconds
        self.on_error = on_error
        self.logger = logging.getLogger(self.__class__.__name__)
        self.running = False
        self._schedule: Optional[DailySchedule] = None
        self._location_label = ""
        # (date, kind): once per event per calendar day, across location changes
        self._fired: Set[Tuple[date, PrayerKind]] = set()
        self._close_tasks: Dict[str, int] = {}
        self._lock = threading.RLock()

    def start(self, schedule: DailySchedule, location_label: str) -> None:
        """Start (or restart with new data) the tick loop."""
        if not schedule:
            raise ValueError("Notifier needs a loaded schedule")
        with self._lock:
            self._schedule = schedule
            self._location_label = location_label
            self.running = True
            self._schedule_next()
        self.logger.info(f"Reminder ticks started for {schedule.date} at {location_label}")

    def stop(self) -> None:
        """Stop the loop entirely and drop the schedule it was holding."""
        with self._lock:
            was_running = self.running
            self.running = False
            self._schedule = None
            self.task_manager.cancel_task(self.TASK_NAME)
        if was_running:
            self.logger.info("Reminder ticks stopped")

    def _next_delay(self, now: datetime) -> float:
        seconds_into_minute = now.second + now.microsecond / 1_000_000
        return TICK_SECONDS - seconds_into_minute + TICK_MARGIN

    def _schedule_next(self) -> None:
        self.task_manager.schedule_task(
            self.TASK_NAME, self._on_tick, self._next_delay(self.clock()), one_time=True
        )

    def _on_tick(self) -> None:
        if not self.running:
            return
        try:
            self.tick(self.clock())
        finally:
            with self._lock:
                if self.running:
                    self._schedule_next()

    def tick(self, now: datetime) -> List[DailyEvent]:
        """Fire reminders for events at now's minute. Returns the events fired."""
        with self._lock:
            schedule = self._schedule
            if not self.running or not schedule:
                return []
            today = now.date()
            current = now.time().replace(second=0, microsecond=0)
            self._fired = {key for key in self._fired if key[0] >= today}

            due = []
            for event in schedule.reminder_events():
                if event.clock_time != current:
                    continue
                key = (today, event.kind)
                if key in self._fired:
                    continue
                self._fired.add(key)
                due.append(event)
            city = self._location_label

        # shown outside the lock so sink or error callbacks can call back into the engine
        for event in due:
            self._remind(event, city)
        return due

    def _remind(self, event: DailyEvent, city: str) -> None:
        title, body = reminder_text(event, city, self.locale)
        self.logger.info(f"Reminder for {event.kind.value} at {event.clock_time:%H:%M}")
        try:
            handle = self.sink.show(title, body, timeout=self.display_seconds)
        except Exception as e:
            self.logger.error(f"Error showing reminder for {event.kind.value}: {e}")
            if self.on_error:
                self.on_error(e)
            return
        self.schedule_close(handle, self.display_seconds)

    def schedule_close(self, handle: int, delay: float) -> None:
        """Dismiss a shown notification after delay seconds."""
        name = f"reminder_close_{handle}"

        def close():
            with self._lock:
                self._close_tasks.pop(name, None)
            self.sink.close(handle)

        with self._lock:
            self._close_tasks[name] = handle
        self.task_manager.schedule_task(name, close, delay)

    def close_pending(self) -> None:
        """Cancel outstanding close timers and dismiss their notifications now."""
        with self._lock:
            pending, self._close_tasks = self._close_tasks, {}
        for name, handle in pending.items():
            self.task_manager.cancel_task(name)
            self.sink.close(handle)
