"""Bounded, newest-first activity history."""
from __future__ import annotations

import logging
from typing import Optional

from wr_sim.domain.models import MAX_ACTIVITY, ActivityEntry, DeviceState
from wr_sim.services.clock import Clock

LOGGER = logging.getLogger(__name__)


class ActivityLog:
    def __init__(self, state: DeviceState, clock: Clock, *, max_entries: int = MAX_ACTIVITY) -> None:
        self._state = state
        self._clock = clock
        self._max_entries = max_entries

    def append(self, text: str, *, level: int = logging.INFO) -> ActivityEntry:
        entry = ActivityEntry(timestamp=self._clock(), text=text)
        self._state.activity.insert(0, entry)
        del self._state.activity[self._max_entries:]
        LOGGER.log(level, "%s", text)
        return entry

    def recent(self, limit: Optional[int] = None) -> list[ActivityEntry]:
        if limit is None:
            return list(self._state.activity)
        return self._state.activity[: max(0, limit)]
