"""
Prayer engine API for a UI shell. Mounted at /api/prayer/.
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .schedule import Location


class LocationModel(BaseModel):
    latitude: float
    longitude: float
    label: Optional[str] = None


class LocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    label: Optional[str] = None


class EventModel(BaseModel):
    kind: str
    label: str
    time: str
    reminder: bool


class ScheduleModel(BaseModel):
    date: str
    events: List[EventModel]


class NextEventModel(BaseModel):
    kind: str
    label: str
    time: str
    tomorrow: bool


class CalendarDayModel(BaseModel):
    date: str
    display_date: str
    imsak: str
    fajr: str
    maghrib: str


class SubscriptionModel(BaseModel):
    permission: str
    armed: bool


class MessageModel(BaseModel):
    title: str
    description: str
    variant: str
    error: Optional[str] = None
    created_at: str


class StatusResponse(BaseModel):
    now: str
    loading: bool
    location: Optional[LocationModel] = None
    schedule: Optional[ScheduleModel] = None
    next_event: Optional[NextEventModel] = None
    imsak: Optional[str] = None
    calendar: List[CalendarDayModel] = []
    subscription: SubscriptionModel
    messages: List[MessageModel] = []


class CutoffResponse(BaseModel):
    imsak: Optional[str] = None


class TestReminderResponse(BaseModel):
    sent: bool
    message: Optional[MessageModel] = None


def get_router(engine) -> APIRouter:
    """Return router for the engine; mounted with prefix /api/prayer."""
    router = APIRouter(tags=["Prayer Times"])

    @router.get("/status", response_model=StatusResponse)
    def get_status() -> StatusResponse:
        return StatusResponse.model_validate(engine.snapshot())

    @router.get("/schedule", response_model=ScheduleModel)
    def get_schedule() -> ScheduleModel:
        schedule = engine.snapshot()["schedule"]
        if schedule is None:
            raise HTTPException(status_code=404, detail="No prayer schedule available")
        return ScheduleModel.model_validate(schedule)

    @router.get("/next", response_model=NextEventModel)
    def get_next() -> NextEventModel:
        upcoming = engine.snapshot()["next_event"]
        if upcoming is None:
            raise HTTPException(status_code=404, detail="No prayer schedule available")
        return NextEventModel.model_validate(upcoming)

    @router.get("/cutoff", response_model=CutoffResponse)
    def get_cutoff() -> CutoffResponse:
        return CutoffResponse(imsak=engine.snapshot()["imsak"])

    @router.get("/calendar", response_model=List[CalendarDayModel])
    def get_calendar() -> List[CalendarDayModel]:
        return [CalendarDayModel.model_validate(day) for day in engine.snapshot()["calendar"]]

    @router.get("/subscription", response_model=SubscriptionModel)
    def get_subscription() -> SubscriptionModel:
        state = engine.subscription_status()
        return SubscriptionModel(permission=state.permission.value, armed=state.armed)

    @router.post("/subscription/toggle", response_model=SubscriptionModel)
    def toggle_subscription() -> SubscriptionModel:
        state = engine.toggle_subscription()
        return SubscriptionModel(permission=state.permission.value, armed=state.armed)

    @router.post("/reminders/test", response_model=TestReminderResponse)
    def send_test_reminder() -> TestReminderResponse:
        sent = engine.send_test_reminder()
        messages = engine.recent_messages()
        last = MessageModel.model_validate(messages[-1].as_dict()) if messages else None
        return TestReminderResponse(sent=sent, message=last)

    @router.put("/location", response_model=LocationModel)
    def put_location(request: LocationRequest) -> LocationModel:
        location = Location(request.latitude, request.longitude, request.label)
        engine.set_location(location)
        return LocationModel(latitude=location.latitude, longitude=location.longitude,
                             label=location.display_label(engine.locale))

    return router
