# errors.py
# Exception hierarchy for the tracking system.
# Rejected GPS samples are not errors and never appear here.


class NavigationError(Exception):
    """Base class for everything this package raises."""


class InputError(NavigationError):
    """Malformed coordinates or an unsupported location capability. Not retried."""


class InvalidStateError(NavigationError):
    """Operation not allowed in the current navigation state."""


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class RoutingError(NavigationError):
    """The routing provider could not supply a usable route."""


class NoRouteFound(RoutingError):
    pass


class ProviderUnavailable(RoutingError):
    pass


class MalformedResponse(RoutingError):
    pass


# ---------------------------------------------------------------------------
# Location source
# ---------------------------------------------------------------------------

class LocationError(NavigationError):
    """The location source failed. Tracking halts until restarted."""


class PermissionDenied(LocationError):
    pass


class PositionUnavailable(LocationError):
    pass


class SourceExhausted(PositionUnavailable):
    """The source ended normally: a replay finished or the source was closed."""


class LocationTimeout(LocationError):
    pass
