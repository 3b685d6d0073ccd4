import argparse
import logging
import sys
from typing import Any, Dict

from imsakiyah.core.app import ImsakiyahApp


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)
        logging.debug("Basic logging initialized")


def format_snapshot(snapshot: Dict[str, Any]) -> str:
    """Plain-text rendering of an engine snapshot for the terminal."""
    lines = []
    location = snapshot.get("location")
    lines.append(f"Location: {location['label'] if location else '-'}")

    schedule = snapshot.get("schedule")
    if schedule:
        lines.append(f"Prayer times for {schedule['date']}:")
        for event in schedule["events"]:
            lines.append(f"  {event['label']:<10} {event['time']}")
    else:
        lines.append("Prayer times: unavailable")

    upcoming = snapshot.get("next_event")
    if upcoming:
        suffix = " (tomorrow)" if upcoming["tomorrow"] else ""
        lines.append(f"Next: {upcoming['label']} {upcoming['time']}{suffix}")
    lines.append(f"Imsak today: {snapshot.get('imsak') or '-'}")

    for message in snapshot.get("messages", []):
        lines.append(f"! {message['title']}: {message['description']}")
    return "\n".join(lines)


def main(argv=None) -> int:
    setup_basic_logging()

    parser = argparse.ArgumentParser(description='Prayer times, imsakiyah and prayer reminders')
    parser.add_argument('--config',
                        help='Path to config file (default: ./config.yaml)')
    parser.add_argument('--once', action='store_true',
                        help='Fetch and print today\'s schedule, then exit')
    parser.add_argument('--test-reminder', action='store_true',
                        help='Show one test reminder, then exit')
    args = parser.parse_args(argv)

    watch = not (args.once or args.test_reminder)
    app = ImsakiyahApp(config_path=args.config or "config.yaml", watch_config=watch)

    if args.test_reminder:
        try:
            return 0 if app.send_test_reminder() else 1
        finally:
            app.shutdown()
    if args.once:
        try:
            print(format_snapshot(app.run_once()))
        finally:
            app.shutdown()
        return 0

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
