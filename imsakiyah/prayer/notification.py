"""
Host notification sinks. The engine only talks to NotificationSink:
is_supported / current_permission / request / show / close.
"""
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from plyer import notification
from plyer.utils import platform

from .errors import ReminderDeliveryFailed
from .permission import Permission

APP_NAME = "Imsakiyah"


class NotificationSink(ABC):
    """Base class for notification hosts.

    There is no permission dialog on the hosts below; `enabled: false` in the
    notifications config plays the role of the host setting that denies them.
    It is read again on every start.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self._handles = itertools.count(1)
        self.open_handles = set()

    @abstractmethod
    def is_supported(self) -> bool:
        pass

    @abstractmethod
    def _show(self, title: str, body: str, icon: Optional[str], timeout: int) -> None:
        pass

    def _host_allows(self) -> bool:
        return bool(self.config.get("enabled", True))

    def current_permission(self) -> Permission:
        if not self.is_supported():
            return Permission.UNSUPPORTED
        return Permission.UNREQUESTED if self._host_allows() else Permission.DENIED

    def request(self) -> Permission:
        if not self.is_supported():
            return Permission.UNSUPPORTED
        return Permission.GRANTED if self._host_allows() else Permission.DENIED

    def show(self, title: str, body: str, icon: Optional[str] = None, timeout: int = 30) -> int:
        """Display a notification and return its handle. Raises ReminderDeliveryFailed."""
        try:
            self._show(title, body, icon or self.config.get("icon"), timeout)
        except ReminderDeliveryFailed:
            raise
        except Exception as e:
            raise ReminderDeliveryFailed(f"Could not show notification: {e}")
        handle = next(self._handles)
        self.open_handles.add(handle)
        return handle

    def close(self, handle: int) -> None:
        self.open_handles.discard(handle)


class DesktopNotificationSink(NotificationSink):
    """Desktop notifications through plyer (Linux, Windows, macOS)."""

    SUPPORTED_PLATFORMS = ("linux", "win", "macosx")

    def is_supported(self) -> bool:
        return str(platform) in self.SUPPORTED_PLATFORMS

    def _show(self, title: str, body: str, icon: Optional[str], timeout: int) -> None:
        kwargs = dict(
            app_name=APP_NAME,
            title=title,
            message=body,
            timeout=timeout,
        )
        if icon:
            kwargs["app_icon"] = icon
        notification.notify(**kwargs)

    def close(self, handle: int) -> None:
        # plyer cannot dismiss; the desktop expires the bubble after `timeout`
        super().close(handle)
        self.logger.debug(f"Notification {handle} expired")


class LogNotificationSink(NotificationSink):
    """Writes reminders to the log. Useful on headless machines."""

    def is_supported(self) -> bool:
        return True

    def _show(self, title: str, body: str, icon: Optional[str], timeout: int) -> None:
        self.logger.info(f"{title}: {body}")


_SINKS = {
    "desktop": DesktopNotificationSink,
    "log": LogNotificationSink,
}


def get_sink(backend_type: str, config: Optional[Dict[str, Any]] = None) -> Optional[NotificationSink]:
    """Factory: return sink instance for given type."""
    cls = _SINKS.get((backend_type or "").lower())
    if not cls:
        return None
    return cls(config)
