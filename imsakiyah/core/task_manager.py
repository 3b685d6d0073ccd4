"""
Named in-memory timers. Scheduling a name again replaces its timer; cancel_task
and stop() cancel unconditionally. Nothing is persisted: timers only fire while
the process runs.
"""
import logging
import threading
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Timer] = {}
        self.logger = logging.getLogger("TaskManager")
        self._lock = threading.RLock()

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds. Recurring tasks repeat every delay seconds."""
        try:
            with self._lock:
                self.logger.debug(f"Scheduling task {name} with delay {delay} seconds")
                if name in self.tasks:
                    self.logger.debug(f"Cancelling existing task {name}")
                    self.tasks[name].cancel()

                scheduled_time = datetime.now().timestamp() + delay
                timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
                timer.daemon = True
                timer.scheduled_time = scheduled_time

                self.tasks[name] = timer
                timer.start()
        except Exception as e:
            self.logger.error(f"Error scheduling task {name}: {e}")

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool) -> None:
        """Run the task and reschedule if needed, unless it was cancelled or replaced meanwhile."""
        with self._lock:
            timer = self.tasks.get(name)
        try:
            callback()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")
        with self._lock:
            if self.tasks.get(name) is not timer or timer is None:
                return
            if one_time:
                del self.tasks[name]
            else:
                timer.last_run = datetime.now().timestamp()
                self.schedule_task(name, callback, delay, one_time)

    def cancel_task(self, name: str) -> bool:
        """Cancel a named task. Returns True if one was scheduled."""
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer is None:
            return False
        timer.cancel()
        self.logger.debug(f"Cancelled task {name}")
        return True

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self.tasks

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        with self._lock:
            for name, timer in self.tasks.items():
                if getattr(timer, "scheduled_time", None) is not None:
                    next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                    result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self) -> None:
        """Stop all scheduled tasks."""
        with self._lock:
            timers = list(self.tasks.values())
            self.tasks.clear()
        for timer in timers:
            timer.cancel()
