from .engine import PrayerEngine, StatusMessage
from .errors import (
    ImsakiyahError,
    LocationUnavailable,
    MalformedSchedule,
    NotificationUnsupported,
    PermissionDenied,
    ReminderDeliveryFailed,
    ScheduleUnavailable,
)
from .permission import Permission, SubscriptionState
from .schedule import (
    FALLBACK_LOCATION,
    DailyEvent,
    DailySchedule,
    ImsakiyahDay,
    Location,
    MonthlyCalendar,
    PrayerKind,
)

__all__ = [
    "PrayerEngine", "StatusMessage",
    "ImsakiyahError", "LocationUnavailable", "MalformedSchedule", "NotificationUnsupported",
    "PermissionDenied", "ReminderDeliveryFailed", "ScheduleUnavailable",
    "Permission", "SubscriptionState",
    "FALLBACK_LOCATION", "DailyEvent", "DailySchedule", "ImsakiyahDay", "Location",
    "MonthlyCalendar", "PrayerKind",
]
