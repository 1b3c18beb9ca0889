# conftest.py
# Shared fixtures: a straight test route along a meridian, OSRM-style response
# bodies and a scriptable router.

import math
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from navigation.tracking.models import Coord, Position, TrackedPosition
from navigation.tracking.nav_config import NavConfig

# Bengaluru, heading due south-to-north in 100 m steps
LAT0 = 12.9716
LNG0 = 77.5946
STEP_DEG = math.degrees(100 / 6_371_000)


def meridian_points(n: int = 51, lng: float = LNG0):
    return [Coord(LAT0 + i * STEP_DEG, lng) for i in range(n)]


def build_body(points=None, distance=None, maneuvers=None, alternatives=0):
    """
    OSRM /route/v1 response for a polyline.

    maneuvers: list of (point_index, type, modifier); defaults to
    depart at the start, a right turn half way and arrive at the end.
    """
    points = points or meridian_points()
    distance = 100.0 * (len(points) - 1) if distance is None else distance
    if maneuvers is None:
        maneuvers = [(0, "depart", None), (len(points) // 2, "turn", "right"), (len(points) - 1, "arrive", None)]

    steps = []
    for idx, m_type, modifier in maneuvers:
        maneuver = {"type": m_type, "location": [points[idx].lng, points[idx].lat]}
        if modifier:
            maneuver["modifier"] = modifier
        steps.append({
            "distance": 100.0,
            "duration": 10.0,
            "name": f"Street {idx}",
            "maneuver": maneuver,
        })

    route = {
        "geometry": {"type": "LineString", "coordinates": [[p.lng, p.lat] for p in points]},
        "distance": distance,
        "duration": distance / 10.0,
        "legs": [{"steps": steps}],
    }
    return {"code": "Ok", "routes": [route] * (1 + alternatives)}


class FakeRouter:
    """
    Router returning scripted bodies (or raising scripted errors) in order.
    The last entry repeats. Set .gate to a threading.Event to hold requests.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.gate = None

    def request(self, origin, destination):
        self.calls.append((origin, destination))
        if self.gate is not None:
            self.gate.wait(5)
        item = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


def tracked(coord, timestamp: float, speed_kmh: float = 36.0) -> TrackedPosition:
    position = Position(coord.lat, coord.lng, accuracy=10.0, timestamp=timestamp)
    return TrackedPosition(position=position, speed_kmh=speed_kmh, heading=0.0, smoothed=coord)


@pytest.fixture
def config(tmp_path):
    return NavConfig(log_dir=str(tmp_path))


@pytest.fixture
def points():
    return meridian_points()


@pytest.fixture
def make_body():
    return build_body


@pytest.fixture
def body():
    return build_body()


@pytest.fixture
def make_router():
    return FakeRouter


@pytest.fixture
def make_fix():
    return tracked
