"""Prayer times, imsakiyah and prayer-time reminders."""

__version__ = "0.1.0"
