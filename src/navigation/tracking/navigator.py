# navigator.py
# Public entry point for the tracking system.
# Owns no business logic: wires the filter, route engine, state machine and
# reroute coordinator together and runs the tracking stream.

import logging
import threading
from typing import Callable, List, Optional

from .errors import InputError, InvalidStateError, LocationError, NavigationError, SourceExhausted
from .location_source import ChannelClosed, LocationSource, PositionChannel
from .models import (
    Coord,
    Instruction,
    NavigationState,
    NavStatus,
    Position,
    ProgressResult,
    RouteBundle,
    TrackedPosition,
)
from .nav_config import NavConfig
from .nav_logger import NavLogger
from .position_filter import PositionFilter
from .reroute import RerouteCoordinator, RetryPolicy
from .route_engine import RouteEngine
from .route_tracker import NavigationStateMachine

logger = logging.getLogger(__name__)

PositionCallback = Callable[[TrackedPosition, ProgressResult], None]
ErrorCallback = Callable[[NavigationError], None]


class NavigationSystem:
    """
    High-level navigation facade.

    Typical lifecycle:
        nav = NavigationSystem(config)
        nav.start_tracking(on_position, on_error, source)
        nav.calculate_route(origin, destination)
        nav.start_navigation()
        ...
        nav.stop_navigation()
        nav.stop_tracking()

    Polled usage (no threads):
        result = nav.update(Position(lat, lng, accuracy, timestamp))

    Args:
        config:       Optional NavConfig; defaults to NavConfig().
        router:       Router collaborator; defaults to OsrmRouter.
        retry_policy: Reroute retry strategy; defaults to NoRetry.
    """

    def __init__(
        self,
        config: Optional[NavConfig] = None,
        router=None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.config = config or NavConfig()

        # Specialist modules
        self._engine  = RouteEngine(router, self.config)
        self._filter  = PositionFilter(self.config)
        self._machine = NavigationStateMachine(self.config)
        self._reroute = RerouteCoordinator(self._engine, self._machine, retry_policy)
        self._logger  = NavLogger(self.config)

        self._lock = threading.RLock()
        self._bundle: Optional[RouteBundle] = None
        self._destination: Optional[Coord] = None
        self._position: Optional[TrackedPosition] = None
        self._last_error: Optional[NavigationError] = None

        # Tracking stream
        self._source: Optional[LocationSource] = None
        self._channel: Optional[PositionChannel] = None
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._on_position: Optional[PositionCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    # ------------------------------------------------------------------
    # Tracking control
    # ------------------------------------------------------------------

    def start_tracking(
        self,
        on_position: Optional[PositionCallback],
        on_error: Optional[ErrorCallback],
        source: LocationSource,
    ) -> None:
        """
        Start reading fixes from a location source on background threads.

        The producer thread filters raw fixes and pushes accepted ones into a
        bounded channel; the consumer thread drains it in arrival order and
        drives navigation. on_position receives every accepted fix with its
        ProgressResult; on_error receives location and reroute failures.
        When the source runs out, fixes already accepted are still delivered
        and tracking ends without an error.

        Raises:
            InputError: no location source was given.
        """
        if source is None:
            raise InputError("No location source available")
        if self.is_tracking:
            logger.warning("GPS tracking is already active")
            return

        self._join_threads()
        self._on_position = on_position
        self._on_error = on_error
        self._source = source
        self._channel = PositionChannel(self.config.channel_size)
        self._stop_event = threading.Event()
        self._threads = [
            threading.Thread(target=self._produce, args=(source, self._channel, self._stop_event),
                             name="nav-producer", daemon=True),
            threading.Thread(target=self._consume, args=(self._channel,),
                             name="nav-consumer", daemon=True),
        ]
        for t in self._threads:
            t.start()
        logger.info("GPS tracking started")

    def stop_tracking(self) -> None:
        """Stop the tracking stream and forget filter history."""
        self._stop_event.set()
        if self._source is not None:
            self._source.close()
        if self._channel is not None:
            self._channel.close(discard=True)
        self._join_threads()
        with self._lock:
            self._filter.reset()
            self._position = None
        self._source = None
        logger.info("GPS tracking stopped")

    # ------------------------------------------------------------------
    # Navigation control
    # ------------------------------------------------------------------

    def calculate_route(self, origin, destination) -> RouteBundle:
        """
        Calculate a route and keep it ready for start_navigation().

        Args:
            origin:      Starting coordinate.
            destination: Target coordinate.

        Returns:
            RouteBundle with main route, alternatives and instructions.

        Raises:
            InputError / RoutingError from RouteEngine.
        """
        bundle = self._engine.calculate_route(origin, destination)
        with self._lock:
            self._bundle = bundle
            self._destination = Coord(float(destination.lat), float(destination.lng))
        first = bundle.instructions[0].text if bundle.instructions else "-"
        logger.info(f"Route ready: {len(bundle.instructions)} instructions. First: {first}")
        return bundle

    def start_navigation(self) -> ProgressResult:
        """
        Begin navigating the last calculated route from the current fix.

        Returns:
            The ProgressResult for the current fix on the new route.

        Raises:
            InvalidStateError: no route calculated, or no current position.
        """
        with self._lock:
            if self._bundle is None:
                raise InvalidStateError("No route calculated")
            if self._position is None:
                raise InvalidStateError("Current location not available")
            if self._machine.status is not NavStatus.IDLE:
                self._replace_machine()

            bundle = self._bundle
            self._machine.start(bundle.main_route, bundle.instructions, self._position)
            self._reroute.set_destination(self._destination)
            if self.config.log_sessions:
                self._logger.save_route(bundle)
            return self._navigate(self._position)

    def stop_navigation(self) -> None:
        """Forcibly end the current navigation session."""
        with self._lock:
            self._reroute.cancel()
            self._machine.stop()
            self._replace_machine()
            self._bundle = None
            self._destination = None
        logger.info("Navigation stopped by user.")

    def retry_reroute(self) -> bool:
        """Re-issue a failed reroute from the current fix. False if not rerouting."""
        with self._lock:
            if self._position is None:
                return False
            return self._reroute.retry(self._position) is not None

    def close(self) -> None:
        """Stop everything and release the reroute worker."""
        self.stop_tracking()
        self.stop_navigation()
        self._reroute.shutdown()

    # ------------------------------------------------------------------
    # GPS update: polled usage
    # ------------------------------------------------------------------

    def update(self, raw: Position) -> Optional[ProgressResult]:
        """
        Process one raw fix synchronously.

        Args:
            raw: Position from any source.

        Returns:
            ProgressResult, or None when the fix was filtered out.
        """
        with self._lock:
            result = self._filter.ingest(raw)
            if not result.accepted:
                return None
            return self._process(result.position)

    # ------------------------------------------------------------------
    # Convenience read-only properties
    # ------------------------------------------------------------------

    @property
    def is_tracking(self) -> bool:
        return any(t.is_alive() for t in self._threads) and not self._stop_event.is_set()

    @property
    def is_navigating(self) -> bool:
        return self._machine.is_active

    @property
    def status(self) -> NavStatus:
        return self._machine.status

    @property
    def state(self) -> Optional[NavigationState]:
        return self._machine.state

    @property
    def current_instruction(self) -> Optional[Instruction]:
        return self._machine.current_instruction

    @property
    def instructions(self) -> List[Instruction]:
        return self._machine.instructions

    @property
    def route_bundle(self) -> Optional[RouteBundle]:
        return self._bundle

    @property
    def position(self) -> Optional[TrackedPosition]:
        return self._position

    @property
    def last_error(self) -> Optional[NavigationError]:
        return self._last_error

    def tracker_status(self) -> dict:
        status = self._filter.status()
        status["is_tracking"] = self.is_tracking
        return status

    def statistics(self) -> dict:
        return self._machine.statistics()

    def covered_route_segment(self) -> List[Coord]:
        return self._machine.covered_route_segment()

    def trip_summary(self) -> dict:
        """Totals of the logged session (requires config.log_sessions)."""
        return self._logger.trip_summary()

    def export_geojson(self, filepath: Optional[str] = None) -> bool:
        """Write the current main route as GeoJSON. False if no route is known."""
        if self._bundle is None:
            return False
        return self._logger.export_geojson(self._bundle.main_route, filepath)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _produce(self, source: LocationSource, channel: PositionChannel, stop: threading.Event) -> None:
        try:
            while not stop.is_set():
                try:
                    raw = source.read(self.config.location_timeout_s)
                except SourceExhausted as e:
                    logger.info(f"Location source finished: {e}")
                    return
                except LocationError as e:
                    if not stop.is_set():
                        logger.error(f"GPS Error: {e}")
                        self._report_error(e)
                    return
                with self._lock:
                    result = self._filter.ingest(raw)
                if result.accepted:
                    channel.put(result.position)
        finally:
            stop.set()
            channel.close()

    def _consume(self, channel: PositionChannel) -> None:
        while True:
            try:
                tracked = channel.get(timeout=0.1)
            except ChannelClosed:
                return
            if tracked is None:
                with self._lock:
                    if self._position is not None:
                        self._poll_reroute(self._position)
                continue

            result = self._process(tracked)
            if self._on_position is not None:
                try:
                    self._on_position(tracked, result)
                except Exception:
                    logger.exception("on_position callback failed")

    def _process(self, tracked: TrackedPosition) -> ProgressResult:
        with self._lock:
            self._position = tracked
            return self._navigate(tracked)

    def _navigate(self, tracked: TrackedPosition) -> ProgressResult:
        result = self._machine.update(tracked)
        if not self._machine.is_active:
            return result

        if result.off_route:
            logger.warning(f"Off route by {result.off_route_distance:.0f} m, requesting a new route.")
            self._reroute.trigger(tracked)
        self._poll_reroute(tracked)

        if self.config.log_sessions:
            self._logger.log_event(result, tracked)
        return result

    def _poll_reroute(self, tracked: TrackedPosition) -> None:
        outcome = self._reroute.poll(tracked)
        if outcome is None:
            return
        if outcome.success:
            self._bundle = outcome.bundle
            if self.config.log_sessions:
                self._logger.save_route(outcome.bundle)
        else:
            self._report_error(outcome.error)

    def _report_error(self, error: NavigationError) -> None:
        self._last_error = error
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("on_error callback failed")

    def _replace_machine(self) -> None:
        self._machine = NavigationStateMachine(self.config)
        self._reroute.bind(self._machine)

    def _join_threads(self) -> None:
        current = threading.current_thread()
        for t in self._threads:
            if t is not current and t.is_alive():
                t.join(timeout=self.config.location_timeout_s + 1)
        self._threads = [t for t in self._threads if t.is_alive()]
