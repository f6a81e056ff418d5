"""Time-of-day schedule engine."""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Callable, Optional

from wr_sim.domain.models import TIME_PATTERN, DeviceState, Schedule
from wr_sim.services.activity import ActivityLog
from wr_sim.services.clock import localize
from wr_sim.services.watering import SOURCE_SCHEDULE, WateringController

LOGGER = logging.getLogger(__name__)


class ScheduleValidationError(RuntimeError):
    """Raised when a schedule is rejected before touching state."""


def validate_time(value: Any) -> str:
    text = str(value).strip() if value is not None else ""
    if not TIME_PATTERN.match(text):
        raise ScheduleValidationError(f"Time must be in 24-hour HH:MM format (got '{value}')")
    return text


def validate_duration(value: Any) -> int:
    if isinstance(value, bool):
        raise ScheduleValidationError(f"Invalid duration '{value}'")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ScheduleValidationError(f"Invalid duration '{value}'") from exc
    if not number.is_integer():
        raise ScheduleValidationError(f"Duration must be whole seconds (got {value})")
    duration = int(number)
    if duration < 1:
        raise ScheduleValidationError(f"Duration must be >= 1 second (got {value})")
    return duration


def next_run_for(schedule: Schedule, now: dt.datetime) -> dt.datetime:
    """Next moment at the schedule's HH:MM strictly after ``now``."""
    hour, minute = schedule.hour_minute()
    candidate = _wall_clock(now, now.date(), hour, minute)
    if candidate <= now:
        candidate = _wall_clock(now, now.date() + dt.timedelta(days=1), hour, minute)
    return candidate


def _wall_clock(now: dt.datetime, day: dt.date, hour: int, minute: int) -> dt.datetime:
    """``day`` at ``hour:minute`` in the zone ``now`` is expressed in."""
    naive = dt.datetime.combine(day, dt.time(hour, minute))
    tzinfo = now.tzinfo
    if isinstance(tzinfo, dt.timezone) and tzinfo == now.astimezone().tzinfo:
        # Fixed offset of the local clock; resolve again so a DST change applies.
        return localize(naive)
    return naive.replace(tzinfo=tzinfo)


def _new_schedule_id() -> str:
    return uuid.uuid4().hex[:8]


class ScheduleEngine:
    def __init__(
        self,
        state: DeviceState,
        activity: ActivityLog,
        watering: WateringController,
        *,
        id_factory: Callable[[], str] = _new_schedule_id,
    ) -> None:
        self._state = state
        self._activity = activity
        self._watering = watering
        self._id_factory = id_factory

    def add(self, time: str, duration_s: Any, repeat_daily: bool = True) -> Schedule:
        schedule = Schedule(
            id=self._unique_id(),
            time=validate_time(time),
            duration=validate_duration(duration_s),
            repeat_daily=bool(repeat_daily),
        )
        self._state.schedules.append(schedule)
        self._activity.append(f"Added schedule {schedule.describe()}.")
        return schedule

    def remove(self, schedule_id: str) -> Optional[Schedule]:
        schedule = self._state.find_schedule(schedule_id)
        if schedule is None:
            return None
        self._state.schedules.remove(schedule)
        self._activity.append(f"Removed schedule {schedule.time} ({schedule.duration}s).")
        return schedule

    def evaluate(self, now: dt.datetime) -> list[Schedule]:
        """Fire every schedule due in the current minute; returns those fired.

        A match holds for the whole minute, so ``last_run_date`` suppresses
        repeats within the same day. One-time schedules are removed in the
        same step that fires them.
        """
        hhmm = now.strftime("%H:%M")
        today = now.date().isoformat()
        fired: list[Schedule] = []

        for schedule in list(self._state.schedules):
            if schedule.time != hhmm or schedule.last_run_date == today:
                continue

            kind = "schedule" if schedule.repeat_daily else "one-time schedule"
            self._activity.append(f"Executing {kind} {schedule.time} ({schedule.duration}s).")
            self._watering.start(schedule.duration, SOURCE_SCHEDULE)
            schedule.last_run_date = today
            fired.append(schedule)
            if not schedule.repeat_daily:
                self.remove(schedule.id)

        if fired:
            LOGGER.debug("Fired %s schedule(s) at %s", len(fired), now.isoformat())
        return fired

    def compute_next_run(self, now: dt.datetime) -> Optional[dt.datetime]:
        if not self._state.schedules:
            return None
        return min(next_run_for(schedule, now) for schedule in self._state.schedules)

    def _unique_id(self) -> str:
        existing = {schedule.id for schedule in self._state.schedules}
        for _ in range(100):
            candidate = self._id_factory()
            if candidate not in existing:
                return candidate
        raise ScheduleValidationError("Could not allocate a unique schedule id")
