from __future__ import annotations

import time
from typing import Callable, Optional

from .config import FleetConfig
from .geo import MileageAccumulator
from .shift import ShiftState, ShiftAction, MilesTracked, reduce_shift


class ShiftSession:
    """Owns the driver-side state and the mileage accumulator; the single writer for both."""

    def __init__(self, cfg: FleetConfig, clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self.clock = clock
        self.state = ShiftState(
            alert_min_pay=cfg.high_value_min_pay,
            alert_min_pay_per_mile=cfg.high_value_min_pay_per_mile,
        )
        self.mileage = MileageAccumulator(
            jitter_threshold=cfg.jitter_threshold_miles,
            radius=cfg.earth_radius_miles,
        )

    def apply(self, action: ShiftAction) -> ShiftState:
        self.state = reduce_shift(self.state, action)
        return self.state

    def record_fix(self, lat: float, lon: float) -> Optional[float]:
        """Feed one location fix. Returns None when tracking is off in the current mode."""
        if not self.state.tracking_enabled:
            return None
        added = self.mileage.add_sample(lat, lon)
        if added:
            self.sync_miles()
        return added

    def sync_miles(self) -> ShiftState:
        return self.apply(MilesTracked(self.mileage.total_miles))
