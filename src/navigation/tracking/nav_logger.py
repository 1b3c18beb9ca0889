# nav_logger.py
# Handles all file I/O for the navigation system.
# Saves routes (JSON / GeoJSON) and navigation events (JSON lines).

import json
import logging
import os
from datetime import datetime
from typing import Optional, Tuple

import pandas as pd
from shapely.geometry import LineString, mapping

from .models import Instruction, ProgressResult, Route, RouteBundle, TrackedPosition
from .nav_config import NavConfig

# Standard Python logger: configure at app entry point if needed
logger = logging.getLogger(__name__)


class NavLogger:
    """
    Persists route data and navigation events to JSON files.

    Args:
        config: NavConfig instance for file paths and directories.
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        os.makedirs(self.config.log_dir, exist_ok=True)

    # ------------------------------------------------------------------
    # Route persistence
    # ------------------------------------------------------------------

    def save_route(self, bundle: RouteBundle) -> bool:
        """
        Serialize the main route and its instructions to JSON.

        Args:
            bundle: RouteBundle from RouteEngine.

        Returns:
            True on success, False on failure.
        """
        filepath = self.config.route_filepath
        try:
            data = {
                "saved_at": datetime.now().isoformat(),
                "route": bundle.main_route.to_dict(),
                "instruction_count": len(bundle.instructions),
                "instructions": [i.to_dict() for i in bundle.instructions],
            }
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            logger.info(f"Route saved to {filepath} ({len(bundle.instructions)} instructions).")
            return True
        except (IOError, TypeError) as e:
            logger.error(f"Failed to save route to {filepath}: {e}")
            return False

    def load_route(self, filepath: Optional[str] = None) -> Optional[Tuple[Route, list]]:
        """
        Load a previously saved route from JSON.

        Args:
            filepath: Path override; uses config default if omitted.

        Returns:
            (route, instructions), or None if loading failed.
        """
        path = filepath or self.config.route_filepath
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            route = Route.from_dict(data["route"])
            instructions = [Instruction.from_dict(i) for i in data["instructions"]]
            logger.info(f"Route loaded from {path} ({len(instructions)} instructions).")
            return route, instructions
        except (IOError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load route from {path}: {e}")
            return None

    def export_geojson(self, route: Route, filepath: Optional[str] = None) -> bool:
        """
        Write the route polyline as a GeoJSON Feature, for geojson.io and friends.

        GeoJSON is [lng, lat]; the swap happens here and nowhere else.
        """
        path = filepath or os.path.join(self.config.log_dir, "route.geojson")
        if len(route.coordinates) < 2:
            logger.error("Cannot export a route with fewer than two points.")
            return False
        line = LineString([(c.lng, c.lat) for c in route.coordinates])
        feature = {
            "type": "Feature",
            "geometry": mapping(line),
            "properties": {
                "distance_meters": route.distance_meters,
                "duration_seconds": route.duration_seconds,
            },
        }
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(feature, f, indent=2)
            logger.info(f"GeoJSON written to {path}.")
            return True
        except IOError as e:
            logger.error(f"Failed to write GeoJSON to {path}: {e}")
            return False

    # ------------------------------------------------------------------
    # Session event logging
    # ------------------------------------------------------------------

    def log_event(self, result: ProgressResult, position: TrackedPosition) -> None:
        """
        Append a single navigation event to the session log file.

        Args:
            result:   ProgressResult from NavigationStateMachine.
            position: The accepted fix that produced it.
        """
        state = result.state
        entry = {
            "timestamp": datetime.now().isoformat(),
            "fix_time": position.timestamp,
            "lat": position.lat,
            "lng": position.lng,
            "speed_kmh": position.speed_kmh,
            "status": result.status.value,
            "message": result.message,
            "instruction_index": result.current_instruction_index,
            "off_route": result.off_route,
            "covered_m": state.covered_distance_meters if state else None,
            "remaining_m": state.remaining_distance_meters if state else None,
            "eta_min": state.eta_minutes if state else None,
        }
        try:
            with open(self.config.session_filepath, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except IOError as e:
            logger.error(f"Failed to write event log: {e}")

    def load_session(self, filepath: Optional[str] = None) -> pd.DataFrame:
        """Session events as a DataFrame; empty if no log exists yet."""
        path = filepath or self.config.session_filepath
        if not os.path.exists(path) or os.path.getsize(path) == 0:
            return pd.DataFrame()
        # fix_time stays in seconds; only the wall-clock column is a date
        return pd.read_json(path, lines=True, convert_dates=["timestamp"], keep_default_dates=False)

    def trip_summary(self, filepath: Optional[str] = None) -> dict:
        """
        Totals for a logged session.

        Returns:
            dict with events, covered_m, max_speed_kmh, average_speed_kmh
            and duration_min.
        """
        df = self.load_session(filepath)
        if df.empty:
            return {
                "events": 0,
                "covered_m": 0.0,
                "max_speed_kmh": 0.0,
                "average_speed_kmh": 0.0,
                "duration_min": 0.0,
            }

        duration_s = float(df["fix_time"].max() - df["fix_time"].min())
        # covered_m restarts after a reroute, so add up each route's maximum
        route_ids = (df["covered_m"].diff() < 0).cumsum()
        covered = float(df.groupby(route_ids)["covered_m"].max().sum())
        return {
            "events": int(len(df)),
            "covered_m": covered,
            "max_speed_kmh": float(df["speed_kmh"].max()),
            "average_speed_kmh": covered / 1000 / (duration_s / 3600) if duration_s > 0 else 0.0,
            "duration_min": duration_s / 60,
        }
