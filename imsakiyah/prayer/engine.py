"""
PrayerEngine: the one owned structure holding the live location, today's
schedule, the monthly calendar and the reminder subscription, plus the timers
that act on them.

Only the engine mutates that state; Presentation reads it through the public
methods. Mutations happen under one lock, so a location change clears the old
schedule before anything can read it, and fetch results started for an earlier
location are discarded.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cutoff import today_cutoff
from .errors import (
    ImsakiyahError,
    LocationUnavailable,
    NotificationUnsupported,
    PermissionDenied,
    ReminderDeliveryFailed,
    ScheduleUnavailable,
)
from .notifier import MinuteTickNotifier, reminder_text
from .permission import Permission, ReminderSubscription, SubscriptionState
from .resolver import is_wrapped, next_event
from .schedule import (
    DEFAULT_LOCALE,
    FALLBACK_LOCATION,
    DailyEvent,
    DailySchedule,
    Location,
    MonthlyCalendar,
    format_clock_time,
)


@dataclass
class StatusMessage:
    """User-visible outcome of an action or a caught error."""
    title: str
    description: str
    variant: str = "default"  # "default" | "destructive"
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "variant": self.variant,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }


class PrayerEngine:
    LOCATION_TASK = "prayer_resolve_location"
    FETCH_TASK = "prayer_fetch"
    REFRESH_TASK = "prayer_display_refresh"

    CALENDAR_MODES = ("current", "ramadan")

    def __init__(
        self,
        provider,
        sink,
        task_manager,
        locator=None,
        geocoder=None,
        store=None,
        clock: Callable[[], datetime] = datetime.now,
        locale: str = DEFAULT_LOCALE,
        calendar_mode: str = "current",
        refresh_interval: int = 60,
        display_seconds: int = 30,
        test_display_seconds: int = 10,
        fallback_location: Location = FALLBACK_LOCATION,
    ):
        if calendar_mode not in self.CALENDAR_MODES:
            raise ValueError(f"Unknown calendar mode: {calendar_mode}")
        self.provider = provider
        self.sink = sink
        self.task_manager = task_manager
        self.locator = locator
        self.geocoder = geocoder
        self.store = store
        self.clock = clock
        self.locale = locale
        self.calendar_mode = calendar_mode
        self.refresh_interval = refresh_interval
        self.test_display_seconds = test_display_seconds
        self.fallback_location = fallback_location
        self.logger = logging.getLogger(self.__class__.__name__)

        self.location: Optional[Location] = None
        self.schedule: Optional[DailySchedule] = None
        self.calendar: Optional[MonthlyCalendar] = None
        self.loading = True
        self.started = False
        self.subscription = ReminderSubscription(sink)
        self.notifier = MinuteTickNotifier(
            task_manager, sink, clock=clock, locale=locale,
            display_seconds=display_seconds, on_error=self._report_error,
        )
        self.messages = deque(maxlen=50)

        self._generation = 0
        self._fetch_pending = False
        self._notifier_inputs: Optional[Tuple[DailySchedule, str]] = None
        self._status_listeners: List[Callable[[StatusMessage], None]] = []
        self._refresh_listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._lock = threading.RLock()
        self._status_lock = threading.Lock()

    # lifecycle

    def start(self) -> None:
        """Read host permission, install the fallback location and start the timers."""
        with self._lock:
            if self.started:
                return
            self.started = True
            try:
                state = self.subscription.initialize()
            except Exception as e:
                self.logger.error(f"Error reading notification permission: {e}", exc_info=True)
                state = self.subscription.state
            self._install_location(self.fallback_location)

        if state is SubscriptionState.UNSUPPORTED:
            self._report_error(NotificationUnsupported("This system cannot show prayer reminders"))
        if self.locator is not None:
            self.task_manager.schedule_task(self.LOCATION_TASK, self.resolve_location, 0)
        else:
            self._report_no_locator()
            self._request_refresh()
        self.task_manager.schedule_task(
            self.REFRESH_TASK, self._on_display_tick, self.refresh_interval, one_time=False
        )
        self.logger.info("Prayer engine started")

    def stop(self) -> None:
        """Cancel every timer the engine owns; fetches still in flight are discarded."""
        with self._lock:
            self.started = False
            self._generation += 1
            self._fetch_pending = False
            for name in (self.LOCATION_TASK, self.FETCH_TASK, self.REFRESH_TASK):
                self.task_manager.cancel_task(name)
            self.notifier.stop()
            self._notifier_inputs = None
        self.notifier.close_pending()
        self.logger.info("Prayer engine stopped")

    # location

    def _locate(self) -> Optional[Location]:
        """Position from the location source, named by the geocoder. None (reported) on failure."""
        try:
            location = self.locator.locate()
        except Exception as e:
            error = e if isinstance(e, LocationUnavailable) else LocationUnavailable(str(e))
            self.logger.warning(f"Location unavailable: {error}")
            self._report_error(
                error, f"{error.message}. Using default location ({self.fallback_location.display_label(self.locale)})"
            )
            return None
        if location.label is None and self.geocoder is not None:
            location = replace(location, label=self.geocoder.city_label(location.latitude, location.longitude))
        return location

    def _report_no_locator(self) -> None:
        self._report_error(
            LocationUnavailable("Location detection is not available"),
            f"Location detection is not available. Using default location "
            f"({self.fallback_location.display_label(self.locale)})",
        )

    def resolve_location(self) -> Optional[Location]:
        """Ask the location source and make the result live; the fallback stays on failure.

        Returns None without asking when the engine has been stopped.
        """
        if not self.started:
            return None
        location = self._locate()
        if location is None:
            self._request_refresh()
            return self.fallback_location
        self.set_location(location)
        return location

    def change_locator(self, locator, fallback_location: Location) -> None:
        """Swap the location source (config reload) and resolve again through it."""
        with self._lock:
            self.locator = locator
            self.fallback_location = fallback_location
            started = self.started
        if not started:
            return
        if locator is not None:
            self.task_manager.schedule_task(self.LOCATION_TASK, self.resolve_location, 0)
        else:
            self._report_no_locator()
            self.set_location(fallback_location)

    def load_now(self) -> None:
        """Resolve location and fetch synchronously, without timers (one-shot use)."""
        with self._lock:
            if self.location is None:
                self._install_location(self.fallback_location)
        if self.locator is None:
            self._report_no_locator()
            location = None
        else:
            location = self._locate()
        if location is not None:
            with self._lock:
                self._install_location(location)
        self.refresh()

    def set_location(self, location: Location) -> None:
        """Replace the live location (geolocation result or user-selected city) and re-fetch.

        A stopped engine only records the location and fetches nothing.
        """
        with self._lock:
            if location == self.location and self.schedule is not None:
                return
            self._install_location(location)
        self._request_refresh()

    def _install_location(self, location: Location) -> None:
        self._generation += 1
        self.location = location
        self.schedule = None
        self.calendar = None
        self.loading = True
        self._sync_notifier()
        self.logger.info(f"Location set to {location.display_label(self.locale)} ({location.key})")

    def set_locale(self, locale: str) -> None:
        with self._lock:
            self.locale = locale
            self.notifier.locale = locale
            if self.geocoder is not None:
                self.geocoder.locale = locale

    # fetching

    def _request_refresh(self) -> None:
        """Fire-and-forget fetch for the live location. No-op once stopped."""
        with self._lock:
            if not self.started:
                return
            self._fetch_pending = True
        self.task_manager.schedule_task(self.FETCH_TASK, self.refresh, 0)

    def _calendar_period(self, today: date) -> str:
        if self.calendar_mode == "ramadan":
            return f"ramadan-{today.year}"
        return today.strftime("%Y-%m")

    def refresh(self, force_fetch: bool = False) -> None:
        """Fetch today's schedule and the calendar for the live location.

        On failure the schedule held so far is kept, then the last stored
        snapshot is tried; ScheduleUnavailable is reported either way.
        """
        with self._lock:
            location = self.location
            generation = self._generation
        if location is None:
            return
        today = self.clock().date()
        period = self._calendar_period(today)

        schedule, schedule_error = None, None
        try:
            schedule = self.provider.get_daily_schedule(today, location, force_fetch=force_fetch)
            self._store_call("save_schedule", location, schedule)
        except Exception as e:
            schedule_error = self._as_schedule_error(e)

        calendar, calendar_error = None, None
        try:
            if self.calendar_mode == "ramadan":
                calendar = self.provider.get_ramadan_calendar(today, location, force_fetch=force_fetch)
            else:
                calendar = self.provider.get_monthly_calendar(today.year, today.month, location,
                                                              force_fetch=force_fetch)
            self._store_call("save_calendar", location, period, calendar)
        except Exception as e:
            calendar_error = self._as_schedule_error(e)

        with self._lock:
            if generation != self._generation:
                self.logger.info(f"Discarding fetch result for replaced location {location.key}")
                return
            if schedule is not None:
                self.schedule = schedule
            elif self.schedule is None:
                self.schedule = self._store_call("load_schedule", location, today)
            if calendar is not None:
                self.calendar = calendar
            elif self.calendar is None:
                self.calendar = self._store_call("load_calendar", location, period)
            self.loading = False
            self._fetch_pending = False
            self._sync_notifier()
            has_schedule = self.schedule is not None
            has_calendar = self.calendar is not None

        if schedule_error:
            self._report_error(schedule_error, self._stale_description(schedule_error, has_schedule))
        if calendar_error:
            self._report_error(calendar_error, self._stale_description(calendar_error, has_calendar))
        self._notify_refresh()

    def _as_schedule_error(self, error: Exception) -> ScheduleUnavailable:
        if isinstance(error, ScheduleUnavailable):
            self.logger.error(f"Error fetching prayer times: {error}")
            return error
        self.logger.error(f"Unexpected error fetching prayer times: {error}", exc_info=True)
        return ScheduleUnavailable(str(error))

    def _stale_description(self, error: ImsakiyahError, has_data: bool) -> str:
        if has_data:
            return f"{error.message}. Showing the last known data"
        return error.message

    def _store_call(self, method: str, *args):
        """Snapshot store calls never break a refresh."""
        if self.store is None:
            return None
        try:
            return getattr(self.store, method)(*args)
        except Exception as e:
            self.logger.error(f"Snapshot store {method} failed: {e}")
            return None

    # display refresh

    def _on_display_tick(self) -> None:
        today = self.clock().date()
        with self._lock:
            outdated = self.schedule is None or self.schedule.date != today
            needs_fetch = self.started and outdated and not self._fetch_pending
        if needs_fetch:
            self.logger.info(f"Schedule outdated for {today}, re-fetching")
            self._request_refresh()
        self._notify_refresh()

    def add_refresh_listener(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._refresh_listeners.append(callback)

    def add_status_listener(self, callback: Callable[[StatusMessage], None]) -> None:
        self._status_listeners.append(callback)

    def _notify_refresh(self) -> None:
        if not self._refresh_listeners:
            return
        snapshot = self.snapshot()
        for callback in list(self._refresh_listeners):
            try:
                callback(snapshot)
            except Exception as e:
                self.logger.error(f"Error in refresh listener: {e}")

    # reminders

    def _sync_notifier(self) -> None:
        """Run the notifier exactly when started, armed and a schedule is loaded. Caller holds the lock."""
        if self.started and self.subscription.armed and self.schedule is not None:
            inputs = (self.schedule, self.location.display_label(self.locale))
            if not self.notifier.running or inputs != self._notifier_inputs:
                self.notifier.start(*inputs)
                self._notifier_inputs = inputs
        elif self.notifier.running:
            self.notifier.stop()
            self._notifier_inputs = None

    def toggle_subscription(self) -> SubscriptionState:
        """Arm or disarm reminders, asking the host for permission the first time."""
        with self._lock:
            try:
                state = self.subscription.toggle()
            except (PermissionDenied, NotificationUnsupported) as e:
                state, error = self.subscription.state, e
            except Exception as e:
                self.logger.error(f"Error requesting notification permission: {e}", exc_info=True)
                state, error = self.subscription.state, PermissionDenied(f"Permission request failed: {e}")
            else:
                error = None
            self._sync_notifier()

        if error is not None:
            self._report_error(error)
        elif state.armed:
            self._report(StatusMessage("Notifications enabled", "You will receive prayer time reminders"))
        else:
            self._report(StatusMessage("Notifications disabled", "Prayer time reminders are off"))
        return state

    def host_permission_changed(self, permission: Permission) -> SubscriptionState:
        """The host revoked or changed the permission while running; armed follows."""
        with self._lock:
            before = self.subscription.state
            state = self.subscription.host_permission_changed(permission)
            self._sync_notifier()
        if before.armed and not state.armed:
            self._report_error(PermissionDenied("Notifications were turned off in the system settings"))
        return state

    def send_test_reminder(self) -> bool:
        """Show one reminder now, outside the minute ticks. Needs granted permission."""
        with self._lock:
            permission = self.subscription.permission
            schedule = self.schedule
            label = self.location.display_label(self.locale) if self.location else ""
            locale = self.locale
        if permission is not Permission.GRANTED:
            self._report_error(ReminderDeliveryFailed("Enable notifications before sending a test reminder"))
            return False

        event = next_event(schedule, self.clock())
        if event is not None:
            title, body = reminder_text(event, label, locale)
        else:
            title, body = "Test", f"Prayer reminders for {label} are working"
        try:
            handle = self.sink.show(title, body, timeout=self.test_display_seconds)
        except Exception as e:
            error = e if isinstance(e, ReminderDeliveryFailed) else ReminderDeliveryFailed(str(e))
            self.logger.error(f"Test reminder failed: {error}")
            self._report_error(error)
            return False
        self.notifier.schedule_close(handle, self.test_display_seconds)
        self._report(StatusMessage("Test reminder sent", "Check that the notification appeared"))
        return True

    # status

    def _report(self, message: StatusMessage) -> None:
        with self._status_lock:
            self.messages.append(message)
        for callback in list(self._status_listeners):
            try:
                callback(message)
            except Exception as e:
                self.logger.error(f"Error in status listener: {e}")

    def _report_error(self, error: Exception, description: Optional[str] = None) -> None:
        if isinstance(error, ImsakiyahError):
            title, text = error.title, error.message
        else:
            title, text = "Error", str(error)
        self._report(StatusMessage(title, description or text, "destructive", type(error).__name__))

    # queries for Presentation

    def get_next_event(self, now: Optional[datetime] = None) -> Optional[DailyEvent]:
        with self._lock:
            schedule = self.schedule
        return next_event(schedule, now or self.clock())

    def get_today_cutoff(self, today: Optional[date] = None) -> Optional[time]:
        with self._lock:
            calendar = self.calendar
        return today_cutoff(calendar, today or self.clock().date())

    def subscription_status(self) -> SubscriptionState:
        with self._lock:
            return self.subscription.state

    def recent_messages(self) -> List[StatusMessage]:
        with self._status_lock:
            return list(self.messages)

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Everything a display needs, as plain data."""
        now = now or self.clock()
        with self._lock:
            location, schedule, calendar = self.location, self.schedule, self.calendar
            state, loading, locale = self.subscription.state, self.loading, self.locale

        upcoming = next_event(schedule, now)
        cutoff = today_cutoff(calendar, now.date())
        return {
            "now": now.isoformat(timespec="seconds"),
            "loading": loading,
            "location": None if location is None else {
                "latitude": location.latitude,
                "longitude": location.longitude,
                "label": location.display_label(locale),
            },
            "schedule": None if schedule is None else {
                "date": schedule.date.isoformat(),
                "events": [
                    {
                        "kind": event.kind.value,
                        "label": event.label(locale),
                        "time": format_clock_time(event.clock_time),
                        "reminder": event.is_reminder,
                    }
                    for event in schedule
                ],
            },
            "next_event": None if upcoming is None else {
                "kind": upcoming.kind.value,
                "label": upcoming.label(locale),
                "time": format_clock_time(upcoming.clock_time),
                "tomorrow": is_wrapped(upcoming, now),
            },
            "imsak": format_clock_time(cutoff) if cutoff else None,
            "calendar": [] if calendar is None else [
                {
                    "date": day.date.isoformat(),
                    "display_date": day.display_date,
                    "imsak": format_clock_time(day.pre_dawn_cutoff),
                    "fajr": format_clock_time(day.dawn),
                    "maghrib": format_clock_time(day.sunset),
                }
                for day in calendar
            ],
            "subscription": {
                "permission": state.permission.value,
                "armed": state.armed,
            },
            "messages": [message.as_dict() for message in self.recent_messages()],
        }
