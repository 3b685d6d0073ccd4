import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from imsakiyah.prayer.engine import PrayerEngine, StatusMessage
from imsakiyah.prayer.location import (
    BigDataCloudGeocoder,
    ConfiguredLocationSource,
    get_location_source,
)
from imsakiyah.prayer.notification import get_sink
from imsakiyah.prayer.permission import Permission, SubscriptionState
from imsakiyah.prayer.prayer_base import get_backend
from imsakiyah.prayer.schedule import FALLBACK_LOCATION, Location
from .config import Config, changed_sections
from .task_manager import TaskManager


class ImsakiyahApp:
    """Wires config, logging, storage and collaborators around one PrayerEngine."""

    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._setup_logging()

        store = None
        if self.config.section("database").get("enabled", True):
            from .db import init_db
            from imsakiyah.prayer.service import SnapshotStore
            init_db(self.config.data)
            store = SnapshotStore()

        self.task_manager = TaskManager()
        self.engine = self._create_engine(store)
        self.engine.add_status_listener(self._log_status)

    def _setup_logging(self) -> None:
        """Configure logging to write to both file and stdout"""
        logging_config = self.config.section("logging")
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = logging_config.get("file")
        if log_file:
            Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(Path(log_file).expanduser())
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Imsakiyah application starting...")

    def _create_locator(self, location_config: Dict[str, Any]):
        """Configured coordinates are a user-selected city and win over geolocation."""
        if location_config.get("latitude") is not None and location_config.get("longitude") is not None:
            return ConfiguredLocationSource(location_config)
        source = get_location_source(location_config.get("source", "ip"), location_config)
        if source is None:
            self.logger.warning(f"Unknown location source {location_config.get('source')}, using fallback only")
        return source

    def _fallback_location(self, location_config: Dict[str, Any]) -> Location:
        fallback = location_config.get("fallback") or {}
        try:
            return Location(
                float(fallback["latitude"]),
                float(fallback["longitude"]),
                fallback.get("city") or FALLBACK_LOCATION.label,
            )
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Invalid fallback location in config ({e}), using {FALLBACK_LOCATION.label}")
            return FALLBACK_LOCATION

    def _create_engine(self, store) -> PrayerEngine:
        locale = self.config.get("locale", "id")

        provider_config = self.config.section("provider")
        provider_config.setdefault("cache_dir", self.config.section("cache").get("directory"))
        provider = get_backend(provider_config.get("backend", "aladhan"), provider_config)
        if provider is None:
            raise ValueError(f"Unknown prayer times backend: {provider_config.get('backend')}")

        notification_config = self.config.section("notifications")
        sink = get_sink(notification_config.get("backend", "desktop"), notification_config)
        if sink is None:
            raise ValueError(f"Unknown notification backend: {notification_config.get('backend')}")

        location_config = self.config.section("location")
        return PrayerEngine(
            provider=provider,
            sink=sink,
            task_manager=self.task_manager,
            locator=self._create_locator(location_config),
            geocoder=BigDataCloudGeocoder(locale, timeout=location_config.get("timeout", 10)),
            store=store,
            locale=locale,
            calendar_mode=self.config.section("imsakiyah").get("month", "current"),
            refresh_interval=int(self.config.get("refresh_interval", 60)),
            display_seconds=int(notification_config.get("display_seconds", 30)),
            test_display_seconds=int(notification_config.get("test_display_seconds", 10)),
            fallback_location=self._fallback_location(location_config),
        )

    def _log_status(self, message: StatusMessage) -> None:
        level = logging.WARNING if message.variant == "destructive" else logging.INFO
        self.logger.log(level, f"{message.title}: {message.description}")

    def handle_config_change(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        """Apply location, locale and notification changes from a reloaded config file"""
        sections = changed_sections(old_config, new_config)
        self.logger.info(f"Handling config change in: {', '.join(sorted(sections)) or 'nothing'}")
        try:
            if "locale" in sections:
                self.engine.set_locale(new_config.get("locale", "id"))

            if "location" in sections:
                location_config = self.config.section("location")
                self.engine.change_locator(
                    self._create_locator(location_config), self._fallback_location(location_config)
                )

            old_enabled = (old_config.get("notifications") or {}).get("enabled", True)
            new_enabled = (new_config.get("notifications") or {}).get("enabled", True)
            if old_enabled and not new_enabled:
                self.engine.sink.config["enabled"] = False
                self.engine.host_permission_changed(Permission.DENIED)
        except Exception as e:
            self.logger.error(f"Error handling config change: {e}", exc_info=True)

    def send_test_reminder(self) -> bool:
        """Read permission, ask for it if never asked, and show one test reminder."""
        state = self.engine.subscription.initialize()
        if state is SubscriptionState.UNREQUESTED:
            self.engine.toggle_subscription()
        return self.engine.send_test_reminder()

    def run_once(self) -> Dict[str, Any]:
        """Resolve location, fetch, and return the snapshot without starting timers."""
        self.engine.load_now()
        return self.engine.snapshot()

    def run(self) -> None:
        try:
            self.engine.start()
            try:
                from imsakiyah.api.server import run_api_server
                run_api_server(self)
            except Exception as e:
                self.logger.warning(f"API server not started: {e}")

            if self.config.section("notifications").get("auto_arm") and \
                    not self.engine.subscription_status().armed:
                self.engine.toggle_subscription()

            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self.engine.stop()
        self.task_manager.stop()
        self.config.cleanup()
