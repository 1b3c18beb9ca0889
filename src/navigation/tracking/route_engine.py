# route_engine.py
# Requests a route from the Router collaborator and normalises the answer
# into a Route + Instruction list. Coordinates leave this module as (lat, lng).

import logging
from typing import List, Optional, Sequence, Tuple

from .errors import InputError, MalformedResponse, NoRouteFound
from .geo_utils import validate_coord
from .models import Coord, Instruction, Route, RouteBundle
from .nav_config import DEFAULT_MANEUVER_TEXT, MANEUVER_TEXT, NavConfig
from .osrm_router import OsrmRouter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def generate_instruction(maneuver_type: Optional[str], modifier: Optional[str] = None) -> str:
    """
    Human-readable text for a maneuver.

    Args:
        maneuver_type: Provider maneuver type ("turn", "fork", ...).
        modifier:      Optional direction ("left", "sharp right", ...).

    Returns:
        Instruction text; "Continue" for unknown types.
    """
    if (maneuver_type, modifier) in MANEUVER_TEXT:
        return MANEUVER_TEXT[(maneuver_type, modifier)]
    return MANEUVER_TEXT.get((maneuver_type, None), DEFAULT_MANEUVER_TEXT)


def _to_coord(pair: Sequence) -> Coord:
    """Convert a provider [lng, lat] pair to Coord(lat, lng)."""
    if not isinstance(pair, (list, tuple)) or len(pair) < 2:
        raise MalformedResponse(f"Expected [lng, lat] pair, got {pair!r}")
    lng, lat = pair[0], pair[1]
    try:
        validate_coord(lat, lng)
    except InputError as e:
        raise MalformedResponse(f"Invalid coordinate in response: {e}") from e
    return Coord(float(lat), float(lng))


def _line(geometry) -> Tuple[Coord, ...]:
    if not isinstance(geometry, dict) or not isinstance(geometry.get("coordinates"), list):
        raise MalformedResponse("Geometry must be a GeoJSON object with coordinates")
    return tuple(_to_coord(p) for p in geometry["coordinates"])


def _number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise MalformedResponse(f"'{name}' must be a non-negative number, got {value!r}")
    return float(value)


def parse_route(route: dict) -> Route:
    """Convert one provider route object to a Route."""
    if not isinstance(route, dict):
        raise MalformedResponse("Route entry is not an object")
    coordinates = _line(route.get("geometry"))
    if not coordinates:
        raise MalformedResponse("Route geometry is empty")
    legs = route.get("legs", [])
    if not isinstance(legs, list):
        raise MalformedResponse("'legs' must be a list")
    return Route(
        coordinates=coordinates,
        distance_meters=_number(route.get("distance"), "distance"),
        duration_seconds=_number(route.get("duration"), "duration"),
        legs=tuple(legs),
    )


def extract_instructions(route: dict) -> List[Instruction]:
    """Flatten every leg's steps into an ordered Instruction list."""
    instructions: List[Instruction] = []
    for leg_index, leg in enumerate(route.get("legs", [])):
        steps = leg.get("steps") if isinstance(leg, dict) else None
        if not isinstance(steps, list):
            raise MalformedResponse(f"Leg {leg_index} has no step list")

        for step_index, step in enumerate(steps):
            if not isinstance(step, dict) or not isinstance(step.get("maneuver"), dict):
                raise MalformedResponse(f"Step {leg_index}-{step_index} has no maneuver")
            maneuver = step["maneuver"]
            m_type = maneuver.get("type")
            modifier = maneuver.get("modifier")
            geometry = step.get("geometry")

            instructions.append(Instruction(
                id=f"{leg_index}-{step_index}",
                type=m_type or "",
                modifier=modifier,
                text=maneuver.get("instruction") or generate_instruction(m_type, modifier),
                distance_meters=_number(step.get("distance", 0), "distance"),
                duration_seconds=_number(step.get("duration", 0), "duration"),
                street_name=step.get("name") or "",
                maneuver_location=_to_coord(maneuver.get("location")),
                coordinates=_line(geometry) if geometry is not None else (),
            ))
    return instructions


def parse_response(data: dict) -> RouteBundle:
    """
    Validate a provider response and build the RouteBundle.

    Raises:
        NoRouteFound:      code is not "Ok" or no routes were returned.
        MalformedResponse: the body does not have the expected structure.
    """
    if not isinstance(data, dict):
        raise MalformedResponse("Routing response is not an object")

    code = data.get("code")
    routes = data.get("routes")
    if code != "Ok":
        raise NoRouteFound(f"Routing error: {data.get('message') or code or 'Unknown error'}")
    if not routes:
        raise NoRouteFound("No routes found")
    if not isinstance(routes, list):
        raise MalformedResponse("'routes' must be a list")

    main_route = parse_route(routes[0])
    alternatives = tuple(parse_route(r) for r in routes[1:])
    instructions = tuple(extract_instructions(routes[0]))
    return RouteBundle(main_route=main_route, alternatives=alternatives, instructions=instructions)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class RouteEngine:
    """
    Obtains routes from a Router collaborator.

    Args:
        router: Object with request(origin, destination) -> dict.
                Defaults to OsrmRouter(config).
        config: NavConfig instance.
    """

    def __init__(self, router=None, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        self.router = router or OsrmRouter(self.config)

    def calculate_route(self, origin: Coord, destination: Coord) -> RouteBundle:
        """
        Request and normalise a route.

        Args:
            origin:      Start coordinate (anything with .lat / .lng).
            destination: Target coordinate.

        Returns:
            RouteBundle with main route, alternatives and instructions.

        Raises:
            InputError:          malformed origin or destination.
            NoRouteFound:        provider found no usable route.
            ProviderUnavailable: network / server failure.
            MalformedResponse:   response failed structural validation.
        """
        validate_coord(origin.lat, origin.lng)
        validate_coord(destination.lat, destination.lng)
        origin = Coord(float(origin.lat), float(origin.lng))
        destination = Coord(float(destination.lat), float(destination.lng))

        logger.info(f"Calculating route: {origin} → {destination}")
        data = self.router.request(origin, destination)
        try:
            bundle = parse_response(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedResponse(f"Unexpected routing response structure: {e}") from e

        route = bundle.main_route
        logger.info(
            f"Route ready: {route.distance_meters:.0f} m, {len(bundle.instructions)} instructions, "
            f"{len(bundle.alternatives)} alternatives."
        )
        return bundle
