# route_tracker.py
# State machine that tracks a user's position against an active route.
# Call start() once, then update() on every accepted GPS fix.

import logging
import time
from collections import deque
from typing import Deque, List, Optional, Sequence

import numpy as np

from .errors import InvalidStateError
from .geo_utils import distance_along_route, distance_between, nearest_vertex
from .models import (
    Coord,
    Instruction,
    NavigationState,
    NavStatus,
    ProgressResult,
    Route,
    SpeedSample,
    TrackedPosition,
)
from .nav_config import ETA_UNKNOWN_MINUTES, NavConfig

logger = logging.getLogger(__name__)


def smooth_eta(raw: float, last_eta: Optional[float], alpha: float) -> float:
    """Exponential smoothing of ETA minutes; the first value passes through."""
    if last_eta is None:
        return raw
    return alpha * raw + (1 - alpha) * last_eta


class NavigationStateMachine:
    """
    Progress tracker for a single navigation session.

    States:
        IDLE → NAVIGATING ⇄ REROUTING; any → STOPPED (terminal).

    Usage:
        machine = NavigationStateMachine(config)
        machine.start(route, instructions, first_fix)

        # Inside GPS loop:
        result = machine.update(tracked_position)
        if result.off_route:
            ...  # hand over to RerouteCoordinator

    Must be driven from one owner so updates are applied in arrival order.
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        self._status = NavStatus.IDLE
        self._route: Optional[Route] = None
        self._instructions: List[Instruction] = []
        self._state: Optional[NavigationState] = None
        self._speed_history: Deque[SpeedSample] = deque(maxlen=self.config.speed_history_size)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, route: Route, instructions: Sequence[Instruction], initial_position) -> None:
        """
        Begin navigating a route.

        Args:
            route:            Route to follow.
            instructions:     Turn-by-turn steps of that route.
            initial_position: Where the user is now (anything with .lat / .lng).

        Raises:
            InvalidStateError: when not IDLE.
        """
        if self._status is not NavStatus.IDLE:
            raise InvalidStateError(f"Cannot start navigation while {self._status.value}")
        self._speed_history.clear()
        self._assign_route(route, instructions, initial_position, last_eta=None)
        self._status = NavStatus.NAVIGATING
        logger.info(
            f"Navigation started: {route.distance_meters:.0f} m, {len(self._instructions)} instructions."
        )

    def begin_reroute(self) -> None:
        """NAVIGATING → REROUTING. Progress bookkeeping pauses until apply_reroute()."""
        if self._status is not NavStatus.NAVIGATING:
            raise InvalidStateError(f"Cannot reroute while {self._status.value}")
        self._status = NavStatus.REROUTING
        logger.info("Off route, rerouting.")

    def apply_reroute(self, route: Route, instructions: Sequence[Instruction], position) -> None:
        """
        REROUTING → NAVIGATING on a freshly calculated route.

        Progress restarts at zero against the new route. Speed history and the
        ETA smoothing memory describe the traveller, not the route, so they
        carry over.
        """
        if self._status is not NavStatus.REROUTING:
            raise InvalidStateError(f"Cannot apply a reroute while {self._status.value}")
        last_eta = self._state.last_eta if self._state else None
        self._assign_route(route, instructions, position, last_eta=last_eta)
        self._status = NavStatus.NAVIGATING
        logger.info(
            f"Reroute applied: {route.distance_meters:.0f} m, {len(self._instructions)} instructions."
        )

    def stop(self) -> None:
        """Forcibly end navigation. Terminal until reset()."""
        self._route = None
        self._instructions = []
        self._state = None
        self._speed_history.clear()
        self._status = NavStatus.STOPPED
        logger.info("Navigation stopped.")

    def reset(self) -> None:
        """Reinitialise to IDLE so a new session can start."""
        self.stop()
        self._status = NavStatus.IDLE

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def status(self) -> NavStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status in (NavStatus.NAVIGATING, NavStatus.REROUTING)

    @property
    def route(self) -> Optional[Route]:
        return self._route

    @property
    def instructions(self) -> List[Instruction]:
        return list(self._instructions)

    @property
    def state(self) -> Optional[NavigationState]:
        return self._state.snapshot() if self._state else None

    @property
    def speed_history(self) -> tuple:
        return tuple(self._speed_history)

    @property
    def current_instruction(self) -> Optional[Instruction]:
        if self._state and 0 <= self._state.current_instruction_index < len(self._instructions):
            return self._instructions[self._state.current_instruction_index]
        return None

    def statistics(self) -> dict:
        return {
            "speed_history_size": len(self._speed_history),
            "average_speed_kmh": self._average_speed(),
            "last_eta": self._state.last_eta if self._state else None,
        }

    def covered_route_segment(self) -> List[Coord]:
        """Leading part of the polyline proportional to progress."""
        if not self._route or not self._state:
            return []
        progress = self._state.progress_percent
        if progress <= 0:
            return []
        count = int(progress / 100 * len(self._route.coordinates))
        return list(self._route.coordinates[:count])

    def distance_along_route(self, position) -> float:
        """Polyline length from the start to the vertex nearest to position."""
        if not self._route:
            return 0.0
        return distance_along_route(position, self._route.points)

    # ------------------------------------------------------------------
    # Core method: call on every accepted GPS fix
    # ------------------------------------------------------------------

    def update(self, position: TrackedPosition) -> ProgressResult:
        """
        Fold an accepted fix into the navigation state.

        Args:
            position: TrackedPosition from PositionFilter.

        Returns:
            ProgressResult with a NavigationState snapshot and off-route flag.
        """
        if self._status is NavStatus.REROUTING:
            return self._result(
                NavStatus.REROUTING, "Recalculating route…",
            )

        if self._status is not NavStatus.NAVIGATING:
            return ProgressResult(
                status=self._status,
                message="Navigation is not active.",
            )

        state = self._state
        cfg = self.config

        # 1–2. Distance accounting
        incremental = distance_between(state.last_position, position)
        state.covered_distance_meters = min(
            state.total_distance_meters, state.covered_distance_meters + incremental
        )
        state.remaining_distance_meters = state.total_distance_meters - state.covered_distance_meters

        # 3–4. Speed
        state.current_speed_kmh = max(0.0, position.speed_kmh)
        if state.current_speed_kmh > cfg.min_speed_for_history_kmh:
            self._speed_history.append(SpeedSample(state.current_speed_kmh, position.timestamp))
        state.average_speed_kmh = self._average_speed()

        # 5. ETA
        state.eta_minutes = self._eta(state)

        state.last_position = position.coord
        state.last_update_time = position.timestamp

        # 6. Instruction advancement, at most one step
        advanced = False
        target = self.current_instruction
        last_index = len(self._instructions) - 1
        if target is not None and state.current_instruction_index < last_index:
            if distance_between(position, target.maneuver_location) < cfg.instruction_threshold_m:
                state.current_instruction_index += 1
                advanced = True

        # 7. Off-route check against every polyline vertex
        _, min_dist = nearest_vertex(position, self._route.points)
        off_route = min_dist > cfg.off_route_threshold_m

        if off_route:
            message = "You are off the route. Recalculating may be needed."
        elif advanced:
            message = self.current_instruction.text
        else:
            message = f"{int(state.remaining_distance_meters)} m remaining."

        return self._result(
            NavStatus.NAVIGATING,
            message,
            off_route=off_route,
            advanced=advanced,
            off_route_distance=min_dist,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _assign_route(self, route: Route, instructions, position, last_eta: Optional[float]) -> None:
        # Same clock as update(): the fix timestamp, wall time for a bare Coord
        now = getattr(position, "timestamp", None)
        if now is None:
            now = time.time()
        self._route = route
        self._instructions = list(instructions)
        self._state = NavigationState(
            total_distance_meters=route.distance_meters,
            covered_distance_meters=0.0,
            remaining_distance_meters=route.distance_meters,
            start_time=now,
            last_update_time=now,
            last_position=Coord(position.lat, position.lng),
            last_eta=last_eta,
        )

    def _average_speed(self) -> float:
        """Recency-weighted mean of the speed history (weights 1..n)."""
        if not self._speed_history:
            return 0.0
        speeds = np.array([s.speed_kmh for s in self._speed_history], dtype=float)
        weights = np.arange(1, len(speeds) + 1, dtype=float)
        return float(np.average(speeds, weights=weights))

    def _eta(self, state: NavigationState) -> float:
        if state.remaining_distance_meters <= 0:
            state.last_eta = 0.0
            return 0.0
        if state.average_speed_kmh < self.config.min_speed_for_eta_kmh:
            return ETA_UNKNOWN_MINUTES

        raw = state.remaining_distance_meters / 1000 / state.average_speed_kmh * 60
        smoothed = smooth_eta(raw, state.last_eta, self.config.eta_smoothing_factor)
        state.last_eta = smoothed
        return smoothed

    def _result(self, status: NavStatus, message: str, **kwargs) -> ProgressResult:
        return ProgressResult(
            status=status,
            message=message,
            state=self._state.snapshot(),
            current_instruction_index=self._state.current_instruction_index,
            current_instruction=self.current_instruction,
            **kwargs,
        )
