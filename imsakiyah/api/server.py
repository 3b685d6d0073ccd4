"""
Local HTTP surface for a UI shell: prayer routes under /api/prayer plus
GET /api/tasks for the engine's live timers. Off unless api.enabled is set.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from imsakiyah.prayer.api import get_router

logger = logging.getLogger(__name__)


class TimerModel(BaseModel):
    name: str
    next_run_at: Optional[datetime] = None


class TasksResponse(BaseModel):
    active_timers: List[TimerModel]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_app(engine: Any, task_manager: Any = None) -> FastAPI:
    """FastAPI app bound to one PrayerEngine (and its TaskManager, for /api/tasks)."""
    app = FastAPI(title="Imsakiyah API", description="Prayer times, imsakiyah and prayer reminders")

    @app.get("/api/tasks", response_model=TasksResponse)
    def get_tasks() -> TasksResponse:
        timers = task_manager.get_active_timers() if task_manager is not None else []
        return TasksResponse(active_timers=[
            TimerModel(name=timer["name"], next_run_at=_as_utc(timer.get("next_run_at")))
            for timer in timers
        ])

    app.include_router(get_router(engine), prefix="/api/prayer")
    return app


def run_api_server(imsakiyah_app: Any) -> Optional[threading.Thread]:
    """Serve the API with uvicorn on a daemon thread; returns the thread, or None when disabled."""
    api_config = imsakiyah_app.config.section("api")
    if not api_config.get("enabled"):
        logger.info("API disabled (api.enabled is false)")
        return None

    import uvicorn

    host, port = api_config["host"], int(api_config["port"])
    fastapi_app = create_app(imsakiyah_app.engine, imsakiyah_app.task_manager)

    def serve():
        try:
            uvicorn.run(fastapi_app, host=host, port=port, log_level="warning")
        except Exception as e:
            logger.exception(f"API server stopped: {e}")

    thread = threading.Thread(target=serve, name="imsakiyah-api", daemon=True)
    thread.start()
    logger.info(f"API serving on http://{host}:{port}/api/prayer/status")
    return thread
