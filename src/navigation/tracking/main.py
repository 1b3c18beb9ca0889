# main.py
# Entry point: simulates a GPS feed driving along a freshly calculated route.
# In production, feed nav.update() (or start_tracking()) from your real GPS source.
#
# Run with: python -m navigation.tracking.main

import logging
import time
from typing import Iterator, List

from .errors import NavigationError
from .geo_utils import distance_between
from .models import Coord, NavStatus, Position
from .nav_config import NavConfig
from .navigator import NavigationSystem

# ------------------------------------------------------------------
# Logging setup: configure once here, all modules inherit
# ------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

# ------------------------------------------------------------------
# Config: tweak thresholds or paths here, not inside the modules
# ------------------------------------------------------------------
config = NavConfig(
    off_route_threshold_m=50.0,
    log_dir="logs",
    log_sessions=True,
)

# ------------------------------------------------------------------
# Simulation coordinates (MG Road → Koramangala, Bengaluru)
# ------------------------------------------------------------------
ORIGIN      = Coord(12.9716, 77.5946)
DESTINATION = Coord(12.9352, 77.6245)

SPEED_MS = 10.0     # simulated vehicle speed
STEP_S   = 1.0      # one fix per second


def simulate_drive(route: List[Coord], start_time: float) -> Iterator[Position]:
    """Yield one fix per STEP_S while moving along the polyline at SPEED_MS."""
    t = start_time
    yield Position(route[0].lat, route[0].lng, accuracy=5.0, timestamp=t, speed=0.0)
    carry = 0.0
    for a, b in zip(route, route[1:]):
        seg = distance_between(a, b)
        offset = SPEED_MS * STEP_S - carry
        while seg > 0 and offset <= seg:
            frac = offset / seg
            t += STEP_S
            yield Position(
                lat=a.lat + (b.lat - a.lat) * frac,
                lng=a.lng + (b.lng - a.lng) * frac,
                accuracy=5.0,
                timestamp=t,
                speed=SPEED_MS,
            )
            offset += SPEED_MS * STEP_S
        carry = seg - (offset - SPEED_MS * STEP_S)
    t += STEP_S
    yield Position(route[-1].lat, route[-1].lng, accuracy=5.0, timestamp=t, speed=SPEED_MS)


def main() -> None:
    nav = NavigationSystem(config=config)

    # 1. Request a route
    try:
        bundle = nav.calculate_route(ORIGIN, DESTINATION)
    except NavigationError as e:
        print(f"[Main] Could not calculate route: {e}")
        return

    # 2. Establish a current position, then start
    route = list(bundle.main_route.coordinates)
    feed = simulate_drive(route, start_time=time.time())
    nav.update(next(feed))
    result = nav.start_navigation()
    print(f"[Main] {result.message}")

    print("\n--- GPS Loop Active ---")

    # 3. GPS loop: replace with real GPS feed in production
    for position in feed:
        result = nav.update(position)
        if result is None:
            continue

        if result.advanced or result.off_route:
            state = result.state
            print(
                f"  GPS ({position.lat:.5f}, {position.lng:.5f}) → [{result.status.name}] "
                f"{result.message}  ({state.remaining_distance_meters:.0f} m, ETA {state.eta_minutes:.1f} min)"
            )

        if result.status is NavStatus.NAVIGATING and result.state.remaining_distance_meters <= 0:
            print("  ✓  Destination reached.")
            break

    print("\n--- Session complete ---")
    summary = nav.trip_summary()
    print(
        f"    {summary['events']} events, {summary['covered_m']:.0f} m covered, "
        f"avg {summary['average_speed_kmh']:.1f} km/h"
    )
    nav.export_geojson()
    print(f"    Log files written to: {config.log_dir}/")
    nav.close()


if __name__ == "__main__":
    main()
