"""Watering session lifecycle: Idle -> Watering -> Idle."""
from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Optional

from wr_sim.domain.models import DeviceState
from wr_sim.services.activity import ActivityLog
from wr_sim.services.clock import Clock
from wr_sim.services.timers import TimerHandle, Timers

LOGGER = logging.getLogger(__name__)

WATER_PER_SECOND = 2.5
TANK_FACTOR = 0.5
LOW_TANK_THRESHOLD = 5.0

SOURCE_MANUAL = "manual"
SOURCE_SCHEDULE = "schedule"

REASON_COMPLETED = "completed"


@dataclass
class WateringSession:
    duration_s: int
    remaining_s: int
    flow_scale: float
    source: str
    started_at: dt.datetime
    timer: Optional[TimerHandle] = None


class WateringController:
    """Runs at most one watering session against the shared state.

    Each session owns a 1-second timer that applies the flow/tank physics
    independently of the drying tick.
    """

    def __init__(
        self,
        state: DeviceState,
        activity: ActivityLog,
        clock: Clock,
        timers: Timers,
        *,
        on_change: Callable[[], None] = lambda: None,
        water_per_second: float = WATER_PER_SECOND,
        tank_factor: float = TANK_FACTOR,
        low_tank_threshold: float = LOW_TANK_THRESHOLD,
        tick_interval_s: float = 1.0,
    ) -> None:
        self._state = state
        self._activity = activity
        self._clock = clock
        self._timers = timers
        self._on_change = on_change
        self._water_per_second = water_per_second
        self._tank_factor = tank_factor
        self._low_tank_threshold = low_tank_threshold
        self._tick_interval_s = tick_interval_s
        self._session: Optional[WateringSession] = None

    @property
    def session(self) -> Optional[WateringSession]:
        return self._session

    def start(self, duration_s: float, source: str = SOURCE_MANUAL) -> bool:
        """Start a session; returns False (after logging why) when rejected."""
        state = self._state
        duration = _session_length(duration_s)
        rejection = None
        if self._session is not None or state.watering:
            rejection = "Already watering; ignoring new command."
        elif not state.connected:
            rejection = "Cannot water: device not connected."
        elif state.tank <= 0:
            rejection = "Cannot water: tank empty."
        elif duration is None:
            rejection = f"Cannot water: invalid duration '{duration_s}'."

        if rejection is not None:
            self._activity.append(rejection, level=logging.WARNING)
            self._on_change()
            return False

        now = self._clock()
        session = WateringSession(
            duration_s=duration,
            remaining_s=duration,
            flow_scale=state.flow_rate / 100.0,
            source=source,
            started_at=now,
        )
        self._session = session
        state.watering = True
        state.last_watered = now
        self._activity.append(
            f"Started watering ({duration}s, {round(state.flow_rate)}% flow) [{source}]"
        )
        session.timer = self._timers.call_every(
            self._tick_interval_s, self._tick, name="watering"
        )
        self._on_change()
        return True

    def step(self) -> None:
        """Apply one second of watering to soil and tank."""
        session = self._session
        if session is None:
            return

        state = self._state
        if session.remaining_s > 0 and state.tank > 0:
            water = session.flow_scale * self._water_per_second
            state.soil = min(100.0, state.soil + water)
            state.tank = max(0.0, state.tank - water * self._tank_factor)
            session.remaining_s -= 1
            if state.tank <= self._low_tank_threshold:
                self._activity.append("Warning: Tank low.", level=logging.WARNING)

        if session.remaining_s <= 0 or state.tank <= 0:
            self._finish(REASON_COMPLETED)

    def stop(self, reason: str = "stopped") -> bool:
        """End the active session; returns False when already idle."""
        if self._session is None and not self._state.watering:
            return False
        self._finish(reason)
        self._on_change()
        return True

    def _tick(self) -> None:
        self.step()
        self._on_change()

    def _finish(self, reason: str) -> None:
        session = self._session
        self._session = None
        if session is not None and session.timer is not None:
            session.timer.cancel()
        self._state.watering = False
        self._state.last_watered = self._clock()
        self._activity.append(f"Watering {reason}.")
        if session is not None:
            LOGGER.debug(
                "Session %s ended after %ss (%s)",
                session.source,
                session.duration_s - session.remaining_s,
                reason,
            )


def _session_length(duration_s: Any) -> Optional[int]:
    """Whole seconds, at least 1; None for non-numeric or non-finite input."""
    if isinstance(duration_s, bool):
        return None
    try:
        number = float(duration_s)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(1, int(number))
