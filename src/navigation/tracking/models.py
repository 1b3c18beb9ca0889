# models.py
# Shared data structures and enums used across all modules.

import dataclasses
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .errors import InputError
from .geo_utils import coords_to_array, validate_coord


# ---------------------------------------------------------------------------
# Coordinate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coord:
    """Immutable geographic coordinate, always (lat, lng)."""
    lat: float
    lng: float

    def to_list(self) -> List[float]:
        return [self.lat, self.lng]


# ---------------------------------------------------------------------------
# Position samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Position:
    """A raw fix as delivered by the location source."""
    lat: float
    lng: float
    accuracy: float              # metres
    timestamp: float             # seconds
    altitude: Optional[float] = None
    heading: Optional[float] = None   # degrees
    speed: Optional[float] = None     # m/s

    def __post_init__(self) -> None:
        validate_coord(self.lat, self.lng)
        if self.accuracy is None or self.accuracy < 0:
            raise InputError(f"Accuracy must be >= 0, got {self.accuracy}")

    @property
    def coord(self) -> Coord:
        return Coord(self.lat, self.lng)


@dataclass(frozen=True)
class TrackedPosition:
    """An accepted fix enriched with derived kinematics."""
    position: Position
    speed_kmh: float
    heading: float
    smoothed: Coord

    @property
    def lat(self) -> float:
        return self.position.lat

    @property
    def lng(self) -> float:
        return self.position.lng

    @property
    def accuracy(self) -> float:
        return self.position.accuracy

    @property
    def timestamp(self) -> float:
        return self.position.timestamp

    @property
    def coord(self) -> Coord:
        return self.position.coord


class RejectReason(Enum):
    POOR_ACCURACY     = "poor_accuracy"
    NO_MOVEMENT       = "no_movement"
    IMPLAUSIBLE_SPEED = "implausible_speed"


@dataclass(frozen=True)
class FilterResult:
    """Outcome of PositionFilter.ingest(); exactly one of position/reason is set."""
    accepted: bool
    position: Optional[TrackedPosition] = None
    reason: Optional[RejectReason] = None


# ---------------------------------------------------------------------------
# Route and instructions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Instruction:
    """A single turn-by-turn step of a route."""
    id: str                      # "<leg>-<step>", stable across reroutes
    type: str
    modifier: Optional[str]
    text: str
    distance_meters: float
    duration_seconds: float
    street_name: str
    maneuver_location: Coord
    coordinates: Tuple[Coord, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "modifier": self.modifier,
            "text": self.text,
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "street_name": self.street_name,
            "maneuver_location": self.maneuver_location.to_list(),
            "coordinates": [c.to_list() for c in self.coordinates],
        }

    @staticmethod
    def from_dict(d: dict) -> "Instruction":
        return Instruction(
            id=d["id"],
            type=d["type"],
            modifier=d.get("modifier"),
            text=d["text"],
            distance_meters=d["distance_meters"],
            duration_seconds=d["duration_seconds"],
            street_name=d.get("street_name", ""),
            maneuver_location=Coord(*d["maneuver_location"]),
            coordinates=tuple(Coord(*c) for c in d.get("coordinates", [])),
        )


@dataclass(frozen=True)
class Route:
    """A route polyline with totals. Never mutated; a reroute replaces it."""
    coordinates: Tuple[Coord, ...]
    distance_meters: float
    duration_seconds: float
    legs: Tuple[Dict[str, Any], ...] = ()

    @cached_property
    def points(self) -> np.ndarray:
        """(n, 2) [lat, lng] array of the polyline vertices."""
        return coords_to_array(self.coordinates)

    def to_dict(self) -> dict:
        return {
            "coordinates": [c.to_list() for c in self.coordinates],
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
        }

    @staticmethod
    def from_dict(d: dict) -> "Route":
        return Route(
            coordinates=tuple(Coord(*c) for c in d["coordinates"]),
            distance_meters=d["distance_meters"],
            duration_seconds=d["duration_seconds"],
        )


@dataclass(frozen=True)
class RouteBundle:
    """Everything RouteEngine.calculate_route() returns."""
    main_route: Route
    alternatives: Tuple[Route, ...]
    instructions: Tuple[Instruction, ...]


# ---------------------------------------------------------------------------
# Navigation state
# ---------------------------------------------------------------------------

class NavStatus(Enum):
    IDLE       = "idle"
    NAVIGATING = "navigating"
    REROUTING  = "rerouting"
    STOPPED    = "stopped"


@dataclass(frozen=True)
class SpeedSample:
    speed_kmh: float
    timestamp: float


@dataclass
class NavigationState:
    """Live progress metrics for one route. Mutated only by the state machine."""
    total_distance_meters: float
    covered_distance_meters: float = 0.0
    remaining_distance_meters: float = 0.0
    current_speed_kmh: float = 0.0
    average_speed_kmh: float = 0.0
    eta_minutes: float = 0.0
    current_instruction_index: int = 0
    start_time: float = 0.0
    last_update_time: float = 0.0
    last_position: Optional[Coord] = None
    last_eta: Optional[float] = None      # exponential smoothing memory

    @property
    def progress_percent(self) -> float:
        if self.total_distance_meters <= 0:
            return 0.0
        pct = self.covered_distance_meters / self.total_distance_meters * 100
        return min(100.0, max(0.0, pct))

    def snapshot(self) -> "NavigationState":
        return dataclasses.replace(self)

    def to_dict(self) -> dict:
        d = dataclasses.asdict(self)
        d["last_position"] = self.last_position.to_list() if self.last_position else None
        d["progress_percent"] = self.progress_percent
        return d


@dataclass
class ProgressResult:
    """Returned by NavigationStateMachine.update() for every accepted fix."""
    status: NavStatus
    message: str
    state: Optional[NavigationState] = None
    current_instruction_index: int = 0
    current_instruction: Optional[Instruction] = None
    off_route: bool = False
    advanced: bool = False
    off_route_distance: Optional[float] = None   # metres to the nearest vertex
