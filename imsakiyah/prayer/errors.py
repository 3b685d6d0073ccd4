"""
Error taxonomy for the prayer engine. Collaborators raise these; the engine
catches them where it calls the collaborator and turns them into status messages.
"""


class ImsakiyahError(Exception):
    """Base class for all engine errors."""

    title = "Error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.title)
        self.message = message or self.title


class LocationUnavailable(ImsakiyahError):
    """Geolocation failed, timed out or is not available; fallback location is used."""
    title = "Location unavailable"


class ScheduleUnavailable(ImsakiyahError):
    """Schedule or calendar could not be fetched; stale data is kept if present."""
    title = "Prayer schedule unavailable"


class MalformedSchedule(ScheduleUnavailable):
    """Provider payload is missing required fields or has unparseable times."""
    title = "Prayer schedule malformed"


class PermissionDenied(ImsakiyahError):
    """Host refused notifications. Not retried for the session."""
    title = "Notification permission denied"


class NotificationUnsupported(ImsakiyahError):
    """Host has no notification capability at all."""
    title = "Notifications not supported"


class ReminderDeliveryFailed(ImsakiyahError):
    """A test reminder could not be shown."""
    title = "Reminder delivery failed"
