"""The watering robot: owner of the device state and its command surface."""
from __future__ import annotations

import contextlib
import datetime as dt
import logging
import math
from typing import Any, Callable, Iterator, Optional

from wr_sim.config import Settings
from wr_sim.domain.models import ActivityEntry, DeviceState, Schedule, clamp_percent
from wr_sim.services.activity import ActivityLog
from wr_sim.services.clock import Clock, system_clock
from wr_sim.services.persistence import StateStore
from wr_sim.services.schedule import ScheduleEngine
from wr_sim.services.simulation import SimulationEngine
from wr_sim.services.timers import ThreadTimers, TimerHandle, Timers, VirtualTimers, cancel_timer
from wr_sim.services.watering import SOURCE_MANUAL, WateringController

LOGGER = logging.getLogger(__name__)

Listener = Callable[[DeviceState], None]


class SettingError(RuntimeError):
    """Raised when a flow or dry rate value is not a number."""


class WateringRobot:
    """Wires the simulation, watering and schedule components to one state.

    Every command and every timer callback runs under ``timers.lock``. After a
    mutation the snapshot is persisted and listeners are called, once per
    command, and never for a no-op.
    """

    def __init__(
        self,
        state: DeviceState,
        *,
        timers: Timers,
        clock: Clock,
        settings: Settings = Settings(),
        store: Optional[StateStore] = None,
    ) -> None:
        self.state = state
        self._timers = timers
        self._clock = clock
        self._settings = settings
        self._store = store
        self._listeners: list[Listener] = []
        self._depth = 0
        self._dirty = False
        self._started = False
        self._sim_timer: Optional[TimerHandle] = None
        self._schedule_timer: Optional[TimerHandle] = None

        self.activity = ActivityLog(state, clock, max_entries=settings.max_activity)
        self.simulation = SimulationEngine(state, dry_coefficient=settings.dry_coefficient)
        self.watering = WateringController(
            state,
            self.activity,
            clock,
            timers,
            on_change=self._mark_changed,
            water_per_second=settings.water_per_second,
            tank_factor=settings.tank_factor,
            low_tank_threshold=settings.low_tank_threshold,
            tick_interval_s=settings.watering_tick_s,
        )
        self.schedules = ScheduleEngine(state, self.activity, self.watering)

    @property
    def store(self) -> Optional[StateStore]:
        return self._store

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # Lifecycle

    def start(self) -> None:
        with self._mutating():
            if self._started:
                return
            self._started = True
            if self._settings.evaluate_while_disconnected:
                self._schedule_timer = self._start_schedule_timer()
            self.activity.append("Device ready.")
            self._mark_changed()

    def shutdown(self) -> None:
        with self._mutating():
            self._cancel_timers(include_schedule=True)
            self.watering.stop("shutdown")
            self.state.connected = False
            self._started = False
            self._mark_changed()

    # Commands

    def connect(self) -> bool:
        with self._mutating():
            if self.state.connected:
                return False
            self.state.connected = True
            self._sim_timer = self._timers.call_every(
                self._settings.tick_interval_s, self._on_simulation_tick, name="simulation"
            )
            if self._schedule_timer is None:
                self._schedule_timer = self._start_schedule_timer()
            self.activity.append("Connected to mock device.")
            self._mark_changed()
            return True

    def disconnect(self) -> bool:
        with self._mutating():
            if not self.state.connected:
                return False
            self._cancel_timers(include_schedule=not self._settings.evaluate_while_disconnected)
            self.state.connected = False
            self.activity.append("Disconnected from mock device.")
            self.watering.stop("device disconnected")
            self._mark_changed()
            return True

    def start_watering(self, duration_s: float, source: str = SOURCE_MANUAL) -> bool:
        with self._mutating():
            return self.watering.start(duration_s, source)

    def stop_watering(self, reason: str = "manually stopped") -> bool:
        with self._mutating():
            return self.watering.stop(reason)

    def add_schedule(self, time: str, duration_s: Any, repeat_daily: bool = True) -> Schedule:
        with self._mutating():
            schedule = self.schedules.add(time, duration_s, repeat_daily)
            self._mark_changed()
            return schedule

    def remove_schedule(self, schedule_id: str) -> bool:
        with self._mutating():
            removed = self.schedules.remove(schedule_id)
            if removed is None:
                return False
            self._mark_changed()
            return True

    def set_flow_rate(self, value: Any) -> float:
        flow_rate = clamp_percent(_to_number(value, "flow rate"))
        with self._mutating():
            if flow_rate != self.state.flow_rate:
                self.state.flow_rate = flow_rate
                self.activity.append(f"Flow rate set to {round(flow_rate)}%.")
                self._mark_changed()
            return flow_rate

    def set_dry_rate(self, value: Any) -> float:
        dry_rate = max(0.0, _to_number(value, "dry rate"))
        with self._mutating():
            if dry_rate != self.state.dry_rate:
                self.state.dry_rate = dry_rate
                self.activity.append(f"Dry rate set to {dry_rate:g}.")
                self._mark_changed()
            return dry_rate

    def reset(self) -> None:
        with self._mutating():
            self._cancel_timers(include_schedule=True)
            self.watering.stop("reset")
            self.state.reset_to_defaults()
            if self._started and self._settings.evaluate_while_disconnected:
                self._schedule_timer = self._start_schedule_timer()
            self.activity.append("Mock state reset.")
            self._mark_changed()

    # Queries

    def next_run(self) -> Optional[dt.datetime]:
        with self._timers.lock:
            return self.schedules.compute_next_run(self._clock())

    def recent_activity(self, limit: Optional[int] = None) -> list[ActivityEntry]:
        with self._timers.lock:
            return list(self.activity.recent(limit))

    def snapshot(self, *, activity_limit: Optional[int] = None) -> dict[str, Any]:
        with self._timers.lock:
            payload = self.state.to_dict(activity_limit=activity_limit)
            next_run = self.schedules.compute_next_run(self._clock())
            payload["next_run"] = next_run.isoformat() if next_run else None
            session = self.watering.session
            payload["session"] = (
                {
                    "source": session.source,
                    "duration_s": session.duration_s,
                    "remaining_s": session.remaining_s,
                    "started_at": session.started_at.isoformat(),
                }
                if session is not None
                else None
            )
            return payload

    # Internals

    def _on_simulation_tick(self) -> None:
        with self._mutating():
            self.simulation.tick()
            self._mark_changed()

    def _on_schedule_tick(self) -> None:
        with self._mutating():
            if self.schedules.evaluate(self._clock()):
                self._mark_changed()

    def _start_schedule_timer(self) -> TimerHandle:
        return self._timers.call_every(
            self._settings.schedule_interval_s, self._on_schedule_tick, name="schedule"
        )

    def _cancel_timers(self, *, include_schedule: bool) -> None:
        cancel_timer(self._sim_timer)
        self._sim_timer = None
        if include_schedule:
            cancel_timer(self._schedule_timer)
            self._schedule_timer = None

    @contextlib.contextmanager
    def _mutating(self) -> Iterator[None]:
        with self._timers.lock:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            if self._depth == 0 and self._dirty:
                self._flush()

    def _mark_changed(self) -> None:
        self._dirty = True
        if self._depth == 0:
            self._flush()

    def _flush(self) -> None:
        self._dirty = False
        if self._store is not None:
            self._store.save(self.state)
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Change listener %r failed", listener)


def build_robot(
    settings: Settings,
    *,
    timers: Optional[Timers] = None,
    store: Optional[StateStore] = None,
) -> WateringRobot:
    """Assemble a robot from settings, loading the persisted snapshot if any."""
    if timers is None:
        timers = ThreadTimers()
    if isinstance(timers, VirtualTimers):
        clock: Clock = timers.now
    else:
        clock = system_clock(settings.timezone)
    if store is None and settings.db_path:
        store = StateStore(settings.db_path)

    state = store.load() if store is not None else DeviceState()
    return WateringRobot(state, timers=timers, clock=clock, settings=settings, store=store)


def _to_number(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise SettingError(f"Invalid {label} '{value}'")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise SettingError(f"Invalid {label} '{value}'") from exc
    if not math.isfinite(number):
        raise SettingError(f"Invalid {label} '{value}'")
    return number
