"""Soil drying model."""
from __future__ import annotations

from wr_sim.domain.models import DeviceState

DRY_COEFFICIENT = 0.02


class SimulationEngine:
    """Advances the physical model by one tick.

    The owner schedules ``tick`` while connected and fires the change
    notification afterwards.
    """

    def __init__(self, state: DeviceState, *, dry_coefficient: float = DRY_COEFFICIENT) -> None:
        self._state = state
        self._dry_coefficient = dry_coefficient

    def tick(self) -> None:
        state = self._state
        if not state.watering:
            state.soil = max(0.0, state.soil - state.dry_rate * self._dry_coefficient)
        # Watering effects are applied by the session timer; clamp here for both.
        state.clamp()
