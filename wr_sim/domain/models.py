"""Domain models for the watering robot."""
from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_SOIL = 50.0
DEFAULT_TANK = 80.0
DEFAULT_FLOW_RATE = 60.0
DEFAULT_DRY_RATE = 1.0
MAX_ACTIVITY = 100

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, float(value)))


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: dt.datetime
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "text": self.text}


@dataclass
class Schedule:
    id: str
    time: str
    duration: int
    repeat_daily: bool = True
    last_run_date: Optional[str] = None

    def hour_minute(self) -> tuple[int, int]:
        match = TIME_PATTERN.match(self.time)
        if match is None:
            raise ValueError(f"Malformed schedule time '{self.time}'")
        return int(match.group(1)), int(match.group(2))

    def describe(self) -> str:
        suffix = " (daily)" if self.repeat_daily else ""
        return f"{self.time} for {self.duration}s{suffix}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "time": self.time,
            "duration": self.duration,
            "repeat_daily": self.repeat_daily,
            "last_run_date": self.last_run_date,
        }


@dataclass
class DeviceState:
    """The single mutable aggregate shared by the simulation components.

    ``connected`` and ``watering`` describe the running process only and are
    never persisted.
    """

    connected: bool = False
    soil: float = DEFAULT_SOIL
    tank: float = DEFAULT_TANK
    watering: bool = False
    flow_rate: float = DEFAULT_FLOW_RATE
    dry_rate: float = DEFAULT_DRY_RATE
    last_watered: Optional[dt.datetime] = None
    schedules: list[Schedule] = field(default_factory=list)
    activity: list[ActivityEntry] = field(default_factory=list)

    def clamp(self) -> None:
        self.soil = clamp_percent(self.soil)
        self.tank = clamp_percent(self.tank)

    def reset_to_defaults(self) -> None:
        fresh = DeviceState()
        self.connected = fresh.connected
        self.soil = fresh.soil
        self.tank = fresh.tank
        self.watering = fresh.watering
        self.flow_rate = fresh.flow_rate
        self.dry_rate = fresh.dry_rate
        self.last_watered = fresh.last_watered
        self.schedules = fresh.schedules
        self.activity = fresh.activity

    def find_schedule(self, schedule_id: str) -> Optional[Schedule]:
        for schedule in self.schedules:
            if schedule.id == schedule_id:
                return schedule
        return None

    def to_dict(self, *, activity_limit: Optional[int] = None) -> dict[str, Any]:
        activity = self.activity if activity_limit is None else self.activity[:activity_limit]
        return {
            "connected": self.connected,
            "soil": round(self.soil, 2),
            "tank": round(self.tank, 2),
            "watering": self.watering,
            "flow_rate": self.flow_rate,
            "dry_rate": self.dry_rate,
            "last_watered": self.last_watered.isoformat() if self.last_watered else None,
            "schedules": [schedule.to_dict() for schedule in self.schedules],
            "activity": [entry.to_dict() for entry in activity],
        }
