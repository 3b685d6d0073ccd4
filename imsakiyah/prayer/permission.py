"""
Permission state machine for reminders.

Permission and the user's armed choice are one value: SubscriptionState only has
members for the reachable (permission, armed) pairs, so armed without a granted
permission cannot be represented.

    permission   | armed=False | armed=True
    -------------+-------------+-----------
    Unrequested  | UNREQUESTED | -
    Granted      | GRANTED     | ARMED
    Denied       | DENIED      | -
    Unsupported  | UNSUPPORTED | -
"""
import logging
from enum import Enum

from .errors import NotificationUnsupported, PermissionDenied


class Permission(Enum):
    UNREQUESTED = "unrequested"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class SubscriptionState(Enum):
    UNREQUESTED = (Permission.UNREQUESTED, False)
    GRANTED = (Permission.GRANTED, False)
    ARMED = (Permission.GRANTED, True)
    DENIED = (Permission.DENIED, False)
    UNSUPPORTED = (Permission.UNSUPPORTED, False)

    @property
    def permission(self) -> Permission:
        return self.value[0]

    @property
    def armed(self) -> bool:
        return self.value[1]

    @classmethod
    def for_permission(cls, permission: Permission) -> "SubscriptionState":
        """Unarmed state for a permission value."""
        return {
            Permission.UNREQUESTED: cls.UNREQUESTED,
            Permission.GRANTED: cls.GRANTED,
            Permission.DENIED: cls.DENIED,
            Permission.UNSUPPORTED: cls.UNSUPPORTED,
        }[permission]


class ReminderSubscription:
    """Owns the subscription state and the only round-trips to the host's permission API."""

    def __init__(self, sink):
        self.sink = sink
        self.state = SubscriptionState.UNREQUESTED
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def permission(self) -> Permission:
        return self.state.permission

    @property
    def armed(self) -> bool:
        return self.state.armed

    def initialize(self) -> SubscriptionState:
        """Read host capability and permission. Called once per process start.

        Unsupported is cached for the process lifetime. A previously denied
        permission is re-read here, so a host-settings change takes effect on restart.
        """
        if not self.sink.is_supported():
            self.state = SubscriptionState.UNSUPPORTED
        else:
            self.state = SubscriptionState.for_permission(self.sink.current_permission())
        self.logger.info(f"Notification permission at startup: {self.state.permission.value}")
        return self.state

    def toggle(self) -> SubscriptionState:
        """User toggle. Raises PermissionDenied or NotificationUnsupported when rejected."""
        state = self.state
        if state is SubscriptionState.ARMED:
            self.state = SubscriptionState.GRANTED
        elif state is SubscriptionState.GRANTED:
            self.state = SubscriptionState.ARMED
        elif state is SubscriptionState.UNREQUESTED:
            self._request()
        elif state is SubscriptionState.DENIED:
            raise PermissionDenied("Notifications were denied; enable them in the system settings")
        else:
            raise NotificationUnsupported("This system cannot show notifications")
        self.logger.info(f"Subscription toggled: {state.name} -> {self.state.name}")
        return self.state

    def _request(self) -> None:
        self.logger.info("Requesting notification permission from host")
        answer = self.sink.request()
        if answer is Permission.GRANTED:
            self.state = SubscriptionState.ARMED
        elif answer is Permission.DENIED:
            self.state = SubscriptionState.DENIED
            raise PermissionDenied("You will not receive prayer reminders")
        elif answer is Permission.UNSUPPORTED:
            self.state = SubscriptionState.UNSUPPORTED
            raise NotificationUnsupported("This system cannot show notifications")
        else:
            # dismissed without an answer; may be asked again
            raise PermissionDenied("Permission request was dismissed")

    def host_permission_changed(self, permission: Permission) -> SubscriptionState:
        """Apply a permission reported by the host. Leaving Granted forces armed off."""
        if self.state is SubscriptionState.UNSUPPORTED:
            return self.state
        if permission is Permission.GRANTED and self.state.permission is Permission.GRANTED:
            return self.state
        self.state = SubscriptionState.for_permission(permission)
        return self.state
