# osrm_router.py
# HTTP client for an OSRM-compatible routing server.
# Returns the raw JSON body; RouteEngine does all parsing and validation.

import logging
from typing import Optional

import requests

from .errors import MalformedResponse, ProviderUnavailable
from .models import Coord
from .nav_config import NavConfig

logger = logging.getLogger(__name__)


class OsrmRouter:
    """
    Router collaborator backed by the OSRM /route/v1 service.

    Any object with a request(origin, destination) -> dict method can be
    used in its place (see RouteEngine).

    Args:
        config:  NavConfig instance for base URL, profile and timeout.
        session: Optional requests.Session to reuse connections.
    """

    def __init__(
        self,
        config: Optional[NavConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or NavConfig()
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", "navigation-tracking/1.0")

    def build_url(self, origin: Coord, destination: Coord) -> str:
        # OSRM wants lng,lat
        base = self.config.router_url.rstrip("/")
        return (
            f"{base}/route/v1/{self.config.osrm_profile}/"
            f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        )

    def request(self, origin: Coord, destination: Coord) -> dict:
        """
        Fetch a route with full GeoJSON geometry and turn-by-turn steps.

        Returns:
            Decoded JSON body.

        Raises:
            ProviderUnavailable: network failure, timeout or server error.
            MalformedResponse:   body is not a JSON object.
        """
        url = self.build_url(origin, destination)
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
            "alternatives": "true" if self.config.alternatives else "false",
        }
        try:
            resp = self._session.get(url, params=params, timeout=self.config.request_timeout_s)
        except requests.Timeout as e:
            logger.error(f"Routing request timed out after {self.config.request_timeout_s}s: {e}")
            raise ProviderUnavailable(f"Routing request timed out: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Routing request failed: {e}")
            raise ProviderUnavailable(f"Routing request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            if not resp.ok:
                raise ProviderUnavailable(f"Routing server returned HTTP {resp.status_code}") from e
            raise MalformedResponse(f"Routing server returned invalid JSON: {e}") from e

        # OSRM answers NoRoute / InvalidQuery with a 4xx and a JSON body carrying
        # a code; that body is passed on so it maps to NoRouteFound.
        has_code = isinstance(data, dict) and "code" in data
        if resp.status_code >= 500 or (not resp.ok and not has_code):
            raise ProviderUnavailable(f"Routing server returned HTTP {resp.status_code}")
        if not isinstance(data, dict):
            raise MalformedResponse("Routing response is not a JSON object")

        logger.debug(f"Routing response {resp.status_code}: code={data.get('code')}")
        return data
