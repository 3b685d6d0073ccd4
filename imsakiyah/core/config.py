import copy
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import yaml
from watchdog.events import FileModifiedEvent, FileSystemEventHandler
from watchdog.observers import Observer

_MISSING = object()

# (section, key) pairs holding filesystem paths; "~" is expanded on load
PATH_KEYS = (
    ("logging", "file"),
    ("database", "path"),
    ("cache", "directory"),
)


def default_config(config_dir: Path) -> Dict[str, Any]:
    return {
        "locale": "id",
        "location": {
            "source": "ip",
            "timeout": 10,
            "fallback": {
                "latitude": -6.2088,
                "longitude": 106.8456,
                "city": "Jakarta",
            },
        },
        "provider": {
            "backend": "aladhan",
            "base_url": "https://api.aladhan.com/v1",
            "method": 11,
            "timeout": 10,
        },
        "imsakiyah": {
            "month": "current",  # current | ramadan
        },
        "notifications": {
            "backend": "desktop",  # desktop | log
            "enabled": True,
            "auto_arm": False,
            "display_seconds": 30,
            "test_display_seconds": 10,
        },
        "refresh_interval": 60,  # seconds
        "logging": {
            "level": "INFO",
            "file": str(config_dir / "imsakiyah.log"),
        },
        "database": {
            "enabled": True,
            "path": str(config_dir / "imsakiyah.db"),
        },
        "cache": {
            "directory": str(config_dir / ".cache"),
        },
        "api": {
            "enabled": False,
            "host": "127.0.0.1",
            "port": 8765,
        },
    }


def config_diff(old: Dict[str, Any], new: Dict[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any, Any]]:
    """Yield (dotted.path, old_value, new_value) for every leaf that differs.

    A key present on one side only yields _MISSING for the other.
    """
    for key in sorted(set(old) | set(new), key=str):
        path = f"{prefix}.{key}" if prefix else str(key)
        before, after = old.get(key, _MISSING), new.get(key, _MISSING)
        if isinstance(before, dict) and isinstance(after, dict):
            yield from config_diff(before, after, path)
        elif before != after:
            yield path, before, after


def changed_sections(old: Dict[str, Any], new: Dict[str, Any]) -> set:
    """Top-level keys with at least one changed leaf."""
    return {path.split(".", 1)[0] for path, _, _ in config_diff(old, new)}


class ConfigChangeHandler(FileSystemEventHandler):
    """Reloads the config when its file is written, at most once per cooldown."""

    def __init__(self, config, cooldown: float = 1.0):
        self.config = config
        self.cooldown = cooldown
        self.last_reload = 0.0

    def on_modified(self, event):
        if not isinstance(event, FileModifiedEvent):
            return
        if Path(event.src_path) != self.config.config_file:
            return

        now = time.time()
        if now - self.last_reload < self.cooldown:
            return
        self.last_reload = now
        try:
            self.config.reload()
        except Exception as e:
            logging.error(f"Config reload from watcher failed: {e}")


class Config:
    """YAML config file with defaults, ${VAR} substitution and hot reload."""

    def __init__(self, config_path: Optional[str] = None, watch: bool = True):
        self.change_callbacks: List[Callable[[Dict[str, Any], Dict[str, Any]], None]] = []
        self._reloading = False
        self.observer = None

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
        else:
            self.config_file = Path.cwd() / "config.yaml"
        self.config_dir = self.config_file.parent
        logging.debug(f"Config file: {self.config_file}")

        self._load_env_file()
        self._write_defaults_if_missing()
        self.data = self._read() or default_config(self.config_dir)

        if watch:
            self.observer = Observer()
            self.observer.schedule(ConfigChangeHandler(self), str(self.config_dir), recursive=False)
            self.observer.start()
            logging.info(f"Watching {self.config_file} for changes")

    def register_change_callback(self, callback: Callable[[Dict[str, Any], Dict[str, Any]], None]) -> None:
        """Callback receives (old_data, new_data) after each successful reload"""
        self.change_callbacks.append(callback)

    def get(self, section: str, default: Any = None) -> Any:
        return self.data.get(section, default)

    def section(self, name: str) -> Dict[str, Any]:
        """Config section merged over its defaults."""
        merged = copy.deepcopy(default_config(self.config_dir).get(name) or {})
        value = self.data.get(name)
        if isinstance(value, dict):
            merged.update(value)
        return merged

    def reload(self) -> None:
        """Re-read the file; on a parse error the current data stays in place."""
        if self._reloading:
            return
        self._reloading = True
        try:
            # editors may still be writing
            time.sleep(0.1)
            new_data = self._read()
            if new_data is None:
                logging.warning("Config reload skipped, keeping current configuration")
                return

            old_data, self.data = self.data, new_data
            changes = list(config_diff(old_data, new_data))
            if not changes:
                logging.info("Config file saved without changes")
            for path, before, after in changes:
                if before is _MISSING:
                    logging.info(f"Config added: {path} = {after}")
                elif after is _MISSING:
                    logging.info(f"Config removed: {path} (was {before})")
                else:
                    logging.info(f"Config changed: {path}: {before} -> {after}")

            for callback in list(self.change_callbacks):
                try:
                    callback(old_data, new_data)
                except Exception as e:
                    logging.exception(f"Config change callback failed: {e}")
        finally:
            self._reloading = False

    def cleanup(self) -> None:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    def _write_defaults_if_missing(self) -> None:
        if self.config_file.exists():
            return
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(yaml.safe_dump(default_config(self.config_dir), sort_keys=False))
        logging.info(f"Wrote default config to {self.config_file}")

    def _load_env_file(self) -> None:
        """KEY=value lines from a .env beside the config (or in cwd); the real environment wins."""
        env_file = next(
            (path for path in (self.config_dir / ".env", Path.cwd() / ".env") if path.is_file()),
            None,
        )
        if env_file is None:
            return

        logging.info(f"Loading environment from {env_file}")
        try:
            lines = env_file.read_text().splitlines()
        except OSError as e:
            logging.warning(f"Cannot read {env_file}: {e}")
            return
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            if key.isidentifier():
                os.environ.setdefault(key, value.strip().strip("'\""))

    def _substitute_env_vars(self, data: Any) -> Any:
        """Replace whole-string ${VAR} or $VAR values; unknown names are left as written."""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        if isinstance(data, str) and data.startswith("$") and len(data) > 1:
            name = data[2:-1] if data.startswith("${") and data.endswith("}") else data[1:]
            return os.environ.get(name, data)
        return data

    def _read(self) -> Optional[Dict[str, Any]]:
        """Parsed, substituted file contents, or None if unreadable or not a mapping."""
        try:
            with open(self.config_file) as f:
                raw = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Cannot load config {self.config_file}: {e}")
            return None
        if not isinstance(raw, dict):
            logging.error(f"Config {self.config_file} must be a mapping at the top level")
            return None

        data = self._substitute_env_vars(raw)
        for section, key in PATH_KEYS:
            value = (data.get(section) or {}).get(key) if isinstance(data.get(section), dict) else None
            if isinstance(value, str):
                data[section][key] = os.path.expanduser(value)
        return data
