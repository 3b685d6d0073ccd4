from datetime import datetime
from unittest import mock

import pytest

from imsakiyah.prayer.engine import PrayerEngine
from imsakiyah.prayer.errors import LocationUnavailable, ScheduleUnavailable
from imsakiyah.prayer.notifier import MinuteTickNotifier
from imsakiyah.prayer.permission import Permission, SubscriptionState
from imsakiyah.prayer.schedule import FALLBACK_LOCATION, Location, PrayerKind

from .conftest import FakeProvider, FakeSink, make_schedule

MECCA = Location(21.4225, 39.8262, "Mecca")
TICK = MinuteTickNotifier.TASK_NAME


def make_engine(provider, sink, task_manager, clock, **kwargs):
    return PrayerEngine(provider, sink, task_manager, clock=clock, **kwargs)


@pytest.fixture
def engine(provider, sink, task_manager, clock):
    return make_engine(provider, sink, task_manager, clock)


@pytest.fixture
def loaded(engine, task_manager):
    engine.start()
    task_manager.run(PrayerEngine.FETCH_TASK)
    return engine


def titles(engine):
    return [m.title for m in engine.recent_messages()]


class TestStart:
    def test_installs_fallback_and_fetches(self, engine, task_manager, provider):
        engine.start()
        assert engine.location == FALLBACK_LOCATION
        assert engine.loading
        assert task_manager.is_scheduled(PrayerEngine.FETCH_TASK)
        assert not task_manager.tasks[PrayerEngine.REFRESH_TASK]["one_time"]

        task_manager.run(PrayerEngine.FETCH_TASK)
        assert not engine.loading
        assert engine.schedule.date == datetime(2024, 3, 15).date()
        assert engine.calendar is not None
        assert provider.calls[0] == ("schedule", engine.schedule.date, FALLBACK_LOCATION)

    def test_reads_host_permission(self, provider, task_manager, clock):
        engine = make_engine(provider, FakeSink(current=Permission.GRANTED), task_manager, clock)
        engine.start()
        assert engine.subscription_status() is SubscriptionState.GRANTED

    def test_unsupported_host_is_reported(self, provider, task_manager, clock):
        engine = make_engine(provider, FakeSink(supported=False), task_manager, clock)
        engine.start()
        assert engine.subscription_status() is SubscriptionState.UNSUPPORTED
        assert "Notifications not supported" in titles(engine)

    def test_ramadan_mode(self, provider, sink, task_manager, clock):
        engine = make_engine(provider, sink, task_manager, clock, calendar_mode="ramadan")
        engine.load_now()
        assert provider.calls[-1][0] == "ramadan"

    def test_unknown_calendar_mode(self, provider, sink, task_manager, clock):
        with pytest.raises(ValueError):
            make_engine(provider, sink, task_manager, clock, calendar_mode="weekly")

    def test_stop_cancels_timers(self, loaded, task_manager):
        loaded.toggle_subscription()
        loaded.stop()
        for name in (PrayerEngine.FETCH_TASK, PrayerEngine.REFRESH_TASK, TICK):
            assert not task_manager.is_scheduled(name)

    def test_stop_during_fetch_discards_result(self, sink, task_manager, clock):
        class StoppingProvider(FakeProvider):
            def get_daily_schedule(self, day, location, force_fetch=False):
                engine.stop()
                return super().get_daily_schedule(day, location, force_fetch)

        engine = make_engine(StoppingProvider(), sink, task_manager, clock)
        engine.start()
        engine.toggle_subscription()
        task_manager.run(PrayerEngine.FETCH_TASK)

        assert engine.schedule is None
        assert not engine.notifier.running
        for name in (PrayerEngine.FETCH_TASK, PrayerEngine.REFRESH_TASK, TICK):
            assert not task_manager.is_scheduled(name)

    def test_stop_during_location_resolution(self, provider, sink, task_manager, clock):
        locator = mock.Mock()

        def locate():
            engine.stop()
            return MECCA

        locator.locate.side_effect = locate
        engine = make_engine(provider, sink, task_manager, clock, locator=locator)
        engine.start()
        task_manager.run(PrayerEngine.LOCATION_TASK)

        assert engine.location == MECCA
        assert not task_manager.is_scheduled(PrayerEngine.FETCH_TASK)
        assert provider.calls == []

    def test_resolve_after_stop_does_nothing(self, provider, sink, task_manager, clock):
        locator = mock.Mock()
        engine = make_engine(provider, sink, task_manager, clock, locator=locator)
        engine.start()
        engine.stop()
        assert engine.resolve_location() is None
        locator.locate.assert_not_called()

    def test_restart_after_stop(self, loaded, task_manager):
        loaded.stop()
        loaded.start()
        assert task_manager.is_scheduled(PrayerEngine.FETCH_TASK)
        task_manager.run(PrayerEngine.FETCH_TASK)
        assert loaded.schedule is not None

    def test_stop_dismisses_open_reminders(self, loaded, task_manager, sink):
        loaded.toggle_subscription()
        loaded.send_test_reminder()
        loaded.stop()
        assert not task_manager.is_scheduled("reminder_close_1")
        assert sink.closed == [1]

    def test_missing_locator_is_reported(self, engine):
        engine.start()
        message = engine.recent_messages()[-1]
        assert message.title == "Location unavailable"
        assert "Jakarta" in message.description
        assert message.error == "LocationUnavailable"

    def test_load_now_without_locator_is_reported(self, engine):
        engine.load_now()
        assert "Location unavailable" in titles(engine)
        assert engine.schedule is not None


class TestLocation:
    def test_geolocation_result_is_named_and_fetched(self, provider, sink, task_manager, clock):
        locator = mock.Mock()
        locator.locate.return_value = Location(-6.9175, 107.6191)
        geocoder = mock.Mock()
        geocoder.city_label.return_value = "Bandung"
        engine = make_engine(provider, sink, task_manager, clock, locator=locator, geocoder=geocoder)
        engine.start()

        task_manager.run(PrayerEngine.LOCATION_TASK)
        assert engine.location.label == "Bandung"
        task_manager.run(PrayerEngine.FETCH_TASK)
        assert provider.calls[0][2].label == "Bandung"

    def test_geolocation_failure_keeps_fallback(self, provider, sink, task_manager, clock):
        locator = mock.Mock()
        locator.locate.side_effect = LocationUnavailable("Location lookup timed out after 10s")
        engine = make_engine(provider, sink, task_manager, clock, locator=locator)
        engine.start()

        task_manager.run(PrayerEngine.LOCATION_TASK)
        assert engine.location == FALLBACK_LOCATION
        message = engine.recent_messages()[-1]
        assert message.title == "Location unavailable"
        assert message.description.endswith("Using default location (Jakarta)")
        assert message.variant == "destructive"

        task_manager.run(PrayerEngine.FETCH_TASK)
        assert engine.schedule is not None

    def test_change_clears_schedule_and_stops_reminders(self, loaded, task_manager):
        loaded.toggle_subscription()
        assert task_manager.is_scheduled(TICK)

        loaded.set_location(MECCA)
        assert loaded.schedule is None
        assert loaded.calendar is None
        assert loaded.loading
        assert not task_manager.is_scheduled(TICK)

        task_manager.run(PrayerEngine.FETCH_TASK)
        assert loaded.schedule is not None
        assert task_manager.is_scheduled(TICK)
        assert loaded.notifier._location_label == "Mecca"

    def test_same_location_does_not_refetch(self, loaded, task_manager):
        loaded.set_location(FALLBACK_LOCATION)
        assert not task_manager.is_scheduled(PrayerEngine.FETCH_TASK)

    def test_result_for_replaced_location_is_discarded(self, engine, task_manager, clock):
        class RacingProvider(FakeProvider):
            def get_daily_schedule(self, day, location, force_fetch=False):
                if location == FALLBACK_LOCATION:
                    engine.set_location(MECCA)
                return super().get_daily_schedule(day, location, force_fetch)

        engine.provider = RacingProvider()
        engine.start()
        task_manager.run(PrayerEngine.FETCH_TASK)
        assert engine.location == MECCA
        assert engine.schedule is None

        task_manager.run(PrayerEngine.FETCH_TASK)
        assert engine.schedule is not None


class TestFetchFailure:
    def test_keeps_stale_schedule(self, loaded, provider):
        before = loaded.schedule
        provider.error = ScheduleUnavailable("Network error fetching timings")
        loaded.refresh()
        assert loaded.schedule is before
        message = loaded.recent_messages()[-1]
        assert message.title == "Prayer schedule unavailable"
        assert message.description.endswith("Showing the last known data")

    def test_uses_stored_snapshot(self, failing_provider, sink, task_manager, clock):
        store = mock.Mock()
        store.load_schedule.return_value = make_schedule()
        store.load_calendar.return_value = None
        engine = make_engine(failing_provider, sink, task_manager, clock, store=store)
        engine.load_now()
        assert engine.schedule == make_schedule()
        assert engine.calendar is None
        assert not engine.loading
        store.load_schedule.assert_called_once_with(FALLBACK_LOCATION, clock.now.date())

    def test_nothing_to_show(self, failing_provider, sink, task_manager, clock):
        engine = make_engine(failing_provider, sink, task_manager, clock)
        engine.load_now()
        assert engine.schedule is None
        assert not engine.loading
        assert "Prayer schedule unavailable" in titles(engine)

    def test_store_errors_do_not_break_refresh(self, provider, sink, task_manager, clock):
        store = mock.Mock()
        store.save_schedule.side_effect = RuntimeError("disk full")
        engine = make_engine(provider, sink, task_manager, clock, store=store)
        engine.load_now()
        assert engine.schedule is not None


class TestDisplayTick:
    def test_new_day_refetches(self, loaded, task_manager, clock, provider):
        clock.now = datetime(2024, 3, 16, 0, 1)
        task_manager.run(PrayerEngine.REFRESH_TASK)
        assert task_manager.is_scheduled(PrayerEngine.REFRESH_TASK)
        task_manager.run(PrayerEngine.FETCH_TASK)
        assert loaded.schedule.date == clock.now.date()
        assert provider.calls[-2][1] == clock.now.date()

    def test_same_day_does_not_refetch(self, loaded, task_manager):
        task_manager.run(PrayerEngine.REFRESH_TASK)
        assert not task_manager.is_scheduled(PrayerEngine.FETCH_TASK)

    def test_listeners_receive_snapshot(self, loaded, task_manager):
        received = []
        loaded.add_refresh_listener(received.append)
        task_manager.run(PrayerEngine.REFRESH_TASK)
        assert received[0]["next_event"]["kind"] == "afternoon"


class TestSubscription:
    def test_toggle_arms_and_starts_ticks(self, loaded, task_manager):
        assert loaded.toggle_subscription() is SubscriptionState.ARMED
        assert task_manager.is_scheduled(TICK)
        assert titles(loaded)[-1] == "Notifications enabled"

    def test_toggle_off_stops_ticks(self, loaded, task_manager):
        loaded.toggle_subscription()
        assert loaded.toggle_subscription() is SubscriptionState.GRANTED
        assert not task_manager.is_scheduled(TICK)
        assert titles(loaded)[-1] == "Notifications disabled"

    def test_armed_before_schedule_starts_ticks_on_load(self, engine, task_manager):
        engine.start()
        engine.toggle_subscription()
        assert not task_manager.is_scheduled(TICK)
        task_manager.run(PrayerEngine.FETCH_TASK)
        assert task_manager.is_scheduled(TICK)

    def test_denied_is_reported(self, provider, task_manager, clock):
        sink = FakeSink(answer=Permission.DENIED)
        engine = make_engine(provider, sink, task_manager, clock)
        engine.start()
        assert engine.toggle_subscription() is SubscriptionState.DENIED
        assert engine.toggle_subscription() is SubscriptionState.DENIED
        assert sink.requests == 1
        assert titles(engine)[-1] == "Notification permission denied"

    def test_host_revocation_stops_ticks(self, loaded, task_manager):
        loaded.toggle_subscription()
        assert loaded.host_permission_changed(Permission.DENIED) is SubscriptionState.DENIED
        assert not task_manager.is_scheduled(TICK)
        assert titles(loaded)[-1] == "Notification permission denied"

    def test_reminder_fires_through_engine(self, loaded, task_manager, clock, sink):
        loaded.toggle_subscription()
        clock.now = datetime(2024, 3, 15, 15, 15, 0)
        task_manager.run(TICK)
        assert sink.shown[-1]["title"] == "Waktu Ashar"
        assert "Jakarta" in sink.shown[-1]["body"]


class TestTestReminder:
    def test_requires_granted_permission(self, loaded, sink):
        assert not loaded.send_test_reminder()
        assert sink.shown == []
        assert titles(loaded)[-1] == "Reminder delivery failed"

    def test_shows_next_event(self, loaded, sink, task_manager):
        loaded.toggle_subscription()
        assert loaded.send_test_reminder()
        assert sink.shown[-1] == {
            "title": "Waktu Ashar",
            "body": "Sekarang waktu Ashar untuk wilayah Jakarta",
            "timeout": 10,
        }
        assert task_manager.tasks["reminder_close_1"]["delay"] == 10
        assert titles(loaded)[-1] == "Test reminder sent"

    def test_delivery_failure(self, loaded, sink):
        loaded.toggle_subscription()
        sink.fail = True
        assert not loaded.send_test_reminder()
        assert titles(loaded)[-1] == "Reminder delivery failed"


class TestQueries:
    def test_next_event(self, loaded, clock):
        assert loaded.get_next_event().kind is PrayerKind.AFTERNOON
        assert loaded.get_next_event(datetime(2024, 3, 15, 21, 0)).kind is PrayerKind.DAWN

    def test_cutoff(self, loaded):
        # sample calendar has no row for the 15th; first row is used
        assert loaded.get_today_cutoff().strftime("%H:%M") == "04:19"

    def test_snapshot(self, loaded):
        snapshot = loaded.snapshot(datetime(2024, 3, 15, 20, 0))
        assert snapshot["location"]["label"] == "Jakarta"
        assert snapshot["schedule"]["events"][1] == {
            "kind": "sunrise", "label": "Terbit", "time": "05:45", "reminder": False,
        }
        assert snapshot["next_event"] == {"kind": "dawn", "label": "Subuh", "time": "04:30", "tomorrow": True}
        assert snapshot["imsak"] == "04:19"
        assert len(snapshot["calendar"]) == 5
        assert snapshot["subscription"] == {"permission": "unrequested", "armed": False}

    def test_locale_change(self, loaded):
        loaded.set_locale("en")
        assert loaded.snapshot()["next_event"]["label"] == "Asr"
        assert loaded.notifier.locale == "en"
