from __future__ import annotations

import datetime as dt
import itertools
import time
from zoneinfo import ZoneInfo

import pytest

from wr_sim.domain.models import DeviceState, Schedule
from wr_sim.services.activity import ActivityLog
from wr_sim.services.schedule import (
    ScheduleEngine,
    ScheduleValidationError,
    next_run_for,
    validate_duration,
    validate_time,
)
from wr_sim.services.timers import VirtualTimers
from wr_sim.services.watering import WateringController

pytestmark = pytest.mark.schedule

UTC = dt.timezone.utc


def _engine(state: DeviceState, timers: VirtualTimers, **kwargs) -> ScheduleEngine:
    activity = ActivityLog(state, timers.now)
    watering = WateringController(state, activity, timers.now, timers)
    return ScheduleEngine(state, activity, watering, **kwargs)


@pytest.mark.parametrize("value", ["00:00", "07:05", "23:59", " 12:30 "])
def test_validate_time_accepts_24h_times(value: str) -> None:
    assert validate_time(value) == value.strip()


@pytest.mark.parametrize("value", ["24:00", "7:00", "07:60", "", None, "ab:cd", "12:345"])
def test_validate_time_rejects_malformed(value: object) -> None:
    with pytest.raises(ScheduleValidationError):
        validate_time(value)


@pytest.mark.parametrize("value, expected", [(1, 1), ("5", 5), (30.0, 30)])
def test_validate_duration_accepts_whole_seconds(value: object, expected: int) -> None:
    assert validate_duration(value) == expected


@pytest.mark.parametrize("value", [0, -3, 1.5, "x", None, True, float("nan")])
def test_validate_duration_rejects(value: object) -> None:
    with pytest.raises(ScheduleValidationError):
        validate_duration(value)


def test_invalid_schedule_does_not_touch_state(timers: VirtualTimers) -> None:
    state = DeviceState()
    engine = _engine(state, timers)

    with pytest.raises(ScheduleValidationError):
        engine.add("25:00", 10)

    assert state.schedules == []
    assert state.activity == []


def test_add_and_remove_log_activity(timers: VirtualTimers) -> None:
    state = DeviceState()
    engine = _engine(state, timers)

    schedule = engine.add("06:30", 45)
    assert state.schedules == [schedule]
    assert state.activity[0].text == "Added schedule 06:30 for 45s (daily)."

    assert engine.remove("missing") is None
    assert engine.remove(schedule.id) == schedule
    assert state.schedules == []
    assert state.activity[0].text == "Removed schedule 06:30 (45s)."


def test_ids_are_unique(timers: VirtualTimers) -> None:
    ids = itertools.chain(["a", "a", "b"])
    state = DeviceState()
    engine = _engine(state, timers, id_factory=lambda: next(ids))

    first = engine.add("06:00", 5)
    second = engine.add("07:00", 5)

    assert (first.id, second.id) == ("a", "b")


def test_next_run_today_or_tomorrow() -> None:
    schedule = Schedule(id="s1", time="08:00", duration=5)

    at_seven = dt.datetime(2026, 3, 2, 7, 0, tzinfo=UTC)
    at_nine = dt.datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
    at_eight = dt.datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    assert next_run_for(schedule, at_seven) == dt.datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
    assert next_run_for(schedule, at_nine) == dt.datetime(2026, 3, 3, 8, 0, tzinfo=UTC)
    assert next_run_for(schedule, at_eight) == dt.datetime(2026, 3, 3, 8, 0, tzinfo=UTC)


@pytest.fixture()
def berlin_local_time(monkeypatch: pytest.MonkeyPatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "Europe/Berlin")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_next_run_keeps_wall_clock_across_dst_in_named_zone() -> None:
    berlin = ZoneInfo("Europe/Berlin")
    schedule = Schedule(id="s1", time="08:00", duration=5)
    # Clocks go forward on the night of 2026-03-29.
    now = dt.datetime(2026, 3, 28, 9, 0, tzinfo=berlin)

    next_run = next_run_for(schedule, now)

    assert (next_run.date(), next_run.hour, next_run.minute) == (dt.date(2026, 3, 29), 8, 0)
    assert next_run.utcoffset() == dt.timedelta(hours=2)


def test_next_run_keeps_wall_clock_across_dst_in_local_time(berlin_local_time: None) -> None:
    schedule = Schedule(id="s1", time="08:00", duration=5)
    now = dt.datetime(2026, 3, 28, 9, 0).astimezone()
    assert now.utcoffset() == dt.timedelta(hours=1)

    next_run = next_run_for(schedule, now)

    local = next_run.astimezone()
    assert (local.date(), local.hour, local.minute) == (dt.date(2026, 3, 29), 8, 0)
    assert next_run.utcoffset() == dt.timedelta(hours=2)


def test_compute_next_run_picks_earliest(timers: VirtualTimers) -> None:
    state = DeviceState()
    engine = _engine(state, timers)
    now = dt.datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

    assert engine.compute_next_run(now) is None

    engine.add("06:00", 5)
    engine.add("18:30", 5)
    engine.add("12:15", 5)

    assert engine.compute_next_run(now) == dt.datetime(2026, 3, 2, 12, 15, tzinfo=UTC)


def test_daily_schedule_fires_once_per_day(timers: VirtualTimers) -> None:
    state = DeviceState(connected=True)
    engine = _engine(state, timers)
    schedule = engine.add("08:00", 5)
    now = dt.datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    assert engine.evaluate(now - dt.timedelta(minutes=1)) == []
    assert engine.evaluate(now) == [schedule]
    assert schedule.last_run_date == "2026-03-02"
    assert state.watering is True

    assert engine.evaluate(now + dt.timedelta(seconds=30)) == []

    assert engine.evaluate(now + dt.timedelta(days=1)) == [schedule]
    assert schedule.last_run_date == "2026-03-03"
    assert state.schedules == [schedule]

    texts = [entry.text for entry in state.activity]
    assert texts.count("Executing schedule 08:00 (5s).") == 2
    # Second firing found the first session still running.
    assert texts[0] == "Already watering; ignoring new command."


def test_one_time_schedule_fires_once_and_is_removed(timers: VirtualTimers) -> None:
    state = DeviceState(connected=True)
    engine = _engine(state, timers)
    schedule = engine.add("08:00", 5, repeat_daily=False)
    now = dt.datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    assert engine.evaluate(now) == [schedule]
    assert state.schedules == []
    assert engine.evaluate(now + dt.timedelta(seconds=5)) == []
    assert engine.evaluate(now + dt.timedelta(days=1)) == []

    texts = [entry.text for entry in state.activity]
    assert "Executing one-time schedule 08:00 (5s)." in texts
    assert texts[0] == "Removed schedule 08:00 (5s)."


def test_schedule_fires_even_when_watering_is_rejected(timers: VirtualTimers) -> None:
    state = DeviceState(connected=False)
    engine = _engine(state, timers)
    schedule = engine.add("08:00", 5)

    fired = engine.evaluate(dt.datetime(2026, 3, 2, 8, 0, 40, tzinfo=UTC))

    assert fired == [schedule]
    assert state.watering is False
    assert state.activity[0].text == "Cannot water: device not connected."
