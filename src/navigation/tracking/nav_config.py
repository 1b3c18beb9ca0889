# nav_config.py
# All tuneable constants in one place.
# Pass a NavConfig instance to every module that needs settings.

import os
from dataclasses import dataclass
from typing import Dict


# ---------------------------------------------------------------------------
# Routing provider constants
# ---------------------------------------------------------------------------

OSRM_DEFAULT_URL: str = "https://router.project-osrm.org"

# Our travel mode → OSRM profile name
OSRM_PROFILES: Dict[str, str] = {
    "driving": "driving",
    "walking": "foot",
    "biking":  "cycling",
}

# (maneuver type, modifier) → text. A None modifier is the type's fallback.
MANEUVER_TEXT: Dict[tuple, str] = {
    ("depart", None):         "Start your journey",
    ("turn", "left"):         "Turn left",
    ("turn", "right"):        "Turn right",
    ("turn", "sharp left"):   "Turn sharp left",
    ("turn", "sharp right"):  "Turn sharp right",
    ("turn", "slight left"):  "Turn slight left",
    ("turn", "slight right"): "Turn slight right",
    ("turn", None):           "Turn",
    ("new name", None):       "Continue straight",
    ("continue", None):       "Continue straight",
    ("merge", None):          "Merge",
    ("on ramp", None):        "Take the ramp",
    ("off ramp", None):       "Take the exit",
    ("fork", "left"):         "Keep left at the fork",
    ("fork", "right"):        "Keep right at the fork",
    ("fork", None):           "Continue at the fork",
    ("roundabout", None):     "Enter the roundabout",
    ("arrive", None):         "You have arrived at your destination",
}

DEFAULT_MANEUVER_TEXT: str = "Continue"

ETA_UNKNOWN_MINUTES: float = 999.0


# ---------------------------------------------------------------------------
# Main config
# ---------------------------------------------------------------------------

@dataclass
class NavConfig:
    # Position filtering
    max_accuracy_m: float = 100.0          # worse fixes are dropped
    min_movement_m: float = 2.0            # smaller moves are GPS noise
    max_speed_kmh: float = 200.0           # faster implied jumps are dropped
    position_history_size: int = 10
    speed_window: int = 3                  # history entries used to derive speed
    smoothing_window: int = 5              # history entries in the smoothed position

    # Progress tracking
    speed_history_size: int = 30
    min_speed_for_history_kmh: float = 0.5
    min_speed_for_eta_kmh: float = 1.0
    eta_smoothing_factor: float = 0.3
    instruction_threshold_m: float = 20.0  # distance to a maneuver that advances the instruction
    off_route_threshold_m: float = 50.0    # nearest-vertex distance that triggers a reroute

    # Routing provider
    router_url: str = OSRM_DEFAULT_URL
    travel_mode: str = "driving"
    request_timeout_s: float = 10.0
    alternatives: bool = True

    # Location source / tracking stream
    location_timeout_s: float = 10.0
    location_max_age_s: float = 1.0
    channel_size: int = 64

    # Logging
    log_dir: str = "."                     # directory for saved JSON files
    route_filename: str = "active_route.json"
    session_filename: str = "nav_session.jsonl"
    log_sessions: bool = False

    @property
    def route_filepath(self) -> str:
        return os.path.join(self.log_dir, self.route_filename)

    @property
    def session_filepath(self) -> str:
        return os.path.join(self.log_dir, self.session_filename)

    @property
    def osrm_profile(self) -> str:
        return OSRM_PROFILES.get(self.travel_mode, "driving")
