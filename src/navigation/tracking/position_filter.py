# position_filter.py
# Decides whether each raw GPS fix is kept, and derives smoothed kinematics
# (speed, heading, position) from the bounded history of kept fixes.

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np

from .geo_utils import calculate_bearing, distance_between
from .models import Coord, FilterResult, Position, RejectReason, TrackedPosition
from .nav_config import NavConfig

logger = logging.getLogger(__name__)


class PositionFilter:
    """
    Stateful noise filter for a single tracking stream.

    Usage:
        filt = PositionFilter(config)

        # Inside GPS loop:
        result = filt.ingest(raw_position)
        if result.accepted:
            tracked = result.position

    ingest() never raises; every fix gets a definite accept/reject answer.

    Args:
        config: NavConfig instance; defaults to NavConfig().
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        self._history: Deque[Position] = deque(maxlen=self.config.position_history_size)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget all accepted fixes."""
        self._history.clear()

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def last_position(self) -> Optional[Position]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> tuple:
        return tuple(self._history)

    def status(self) -> dict:
        last = self.last_position
        return {
            "has_position": last is not None,
            "accuracy": last.accuracy if last else None,
            "history_size": len(self._history),
        }

    # ------------------------------------------------------------------
    # Core method: call on every raw fix
    # ------------------------------------------------------------------

    def ingest(self, raw: Position) -> FilterResult:
        """
        Accept or reject a raw fix.

        Args:
            raw: Position straight from the location source.

        Returns:
            FilterResult; accepted results carry a TrackedPosition.
        """
        reason = self._rejection_reason(raw)
        if reason is not None:
            return FilterResult(accepted=False, reason=reason)

        self._history.append(raw)
        tracked = TrackedPosition(
            position=raw,
            speed_kmh=self._speed_kmh(raw),
            heading=self._heading(raw),
            smoothed=self._smoothed(),
        )
        return FilterResult(accepted=True, position=tracked)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _rejection_reason(self, raw: Position) -> Optional[RejectReason]:
        cfg = self.config

        # 1. Poor accuracy
        if raw.accuracy > cfg.max_accuracy_m:
            logger.debug(f"Position rejected: poor accuracy ({raw.accuracy} m)")
            return RejectReason.POOR_ACCURACY

        prior = self.last_position
        if prior is None:
            return None

        # 2. Too small to be movement
        distance = distance_between(prior, raw)
        if distance < cfg.min_movement_m:
            logger.debug(f"Position rejected: GPS noise ({distance:.2f} m)")
            return RejectReason.NO_MOVEMENT

        # 3. Implausible jump
        dt = raw.timestamp - prior.timestamp
        if dt > 0:
            speed_kmh = distance / dt * 3.6
            if speed_kmh > cfg.max_speed_kmh:
                logger.debug(f"Position rejected: unrealistic speed ({speed_kmh:.1f} km/h)")
                return RejectReason.IMPLAUSIBLE_SPEED

        return None

    def _speed_kmh(self, raw: Position) -> float:
        if raw.speed is not None and raw.speed >= 0:
            return raw.speed * 3.6
        return self._derived_speed_ms() * 3.6

    def _derived_speed_ms(self) -> float:
        """Σdistance / Σtime over the most recent history entries, in m/s."""
        if len(self._history) < 2:
            return 0.0
        recent = list(self._history)[-self.config.speed_window:]
        total_distance = 0.0
        total_time = 0.0
        for prev, curr in zip(recent, recent[1:]):
            total_distance += distance_between(prev, curr)
            total_time += curr.timestamp - prev.timestamp
        return total_distance / total_time if total_time > 0 else 0.0

    def _heading(self, raw: Position) -> float:
        if raw.heading is not None:
            return raw.heading
        if len(self._history) < 2:
            return 0.0
        previous, current = self._history[-2], self._history[-1]
        return calculate_bearing(previous.lat, previous.lng, current.lat, current.lng)

    def _smoothed(self) -> Coord:
        """Recency-weighted mean of the last few fixes (weights 1..k)."""
        recent = list(self._history)[-self.config.smoothing_window:]
        points = np.array([(p.lat, p.lng) for p in recent], dtype=float)
        weights = np.arange(1, len(recent) + 1, dtype=float)
        lat, lng = np.average(points, axis=0, weights=weights)
        return Coord(float(lat), float(lng))
