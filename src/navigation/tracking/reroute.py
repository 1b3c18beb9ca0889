# reroute.py
# Orchestrates route recalculation when the user leaves the route.
# Requests run on a single background worker; results are applied only when
# the owner of the state machine calls poll().

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import InvalidStateError, ProviderUnavailable, RoutingError
from .models import Coord, NavStatus, RouteBundle
from .route_engine import RouteEngine
from .route_tracker import NavigationStateMachine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Retry strategies
# ---------------------------------------------------------------------------

class RetryPolicy:
    """Decides whether, and after how long, a failed reroute is retried."""

    def next_delay(self, attempt: int, error: RoutingError) -> Optional[float]:
        """
        Args:
            attempt: Number of failed attempts so far (1 after the first failure).
            error:   The failure.

        Returns:
            Seconds to wait before retrying, or None to give up.
        """
        raise NotImplementedError


class NoRetry(RetryPolicy):
    def next_delay(self, attempt: int, error: RoutingError) -> Optional[float]:
        return None


class FixedBackoff(RetryPolicy):
    def __init__(self, delay_s: float = 2.0, max_attempts: int = 3) -> None:
        self.delay_s = delay_s
        self.max_attempts = max_attempts

    def next_delay(self, attempt: int, error: RoutingError) -> Optional[float]:
        return self.delay_s if attempt < self.max_attempts else None


class ExponentialBackoff(RetryPolicy):
    def __init__(
        self,
        base_s: float = 1.0,
        factor: float = 2.0,
        max_delay_s: float = 30.0,
        max_attempts: int = 5,
    ) -> None:
        self.base_s = base_s
        self.factor = factor
        self.max_delay_s = max_delay_s
        self.max_attempts = max_attempts

    def next_delay(self, attempt: int, error: RoutingError) -> Optional[float]:
        if attempt >= self.max_attempts:
            return None
        return min(self.max_delay_s, self.base_s * self.factor ** (attempt - 1))


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

@dataclass
class RerouteOutcome:
    """What poll() observed: a new route, or a failure while still REROUTING."""
    bundle: Optional[RouteBundle] = None
    error: Optional[RoutingError] = None
    retry_in_s: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.bundle is not None


class RerouteCoordinator:
    """
    Debounced, cancellable reroute requests for one navigation session.

    Usage:
        coordinator = RerouteCoordinator(engine, machine)
        coordinator.set_destination(destination)

        # Inside GPS loop, after machine.update():
        if result.off_route:
            coordinator.trigger(position)
        outcome = coordinator.poll(position)

    Args:
        engine:       RouteEngine used for recalculation.
        machine:      NavigationStateMachine to switch and re-seed.
        retry_policy: Strategy for failed requests; NoRetry by default.
        clock:        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        engine: RouteEngine,
        machine: NavigationStateMachine,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.machine = machine
        self.retry_policy = retry_policy or NoRetry()
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reroute")
        self._lock = threading.Lock()
        self._destination: Optional[Coord] = None
        self._future: Optional[Future] = None
        self._future_generation = 0
        self._generation = 0
        self._attempts = 0
        self._retry_at: Optional[float] = None
        self._last_error: Optional[RoutingError] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_destination(self, destination: Coord) -> None:
        self._destination = destination

    def bind(self, machine: NavigationStateMachine) -> None:
        """Point the coordinator at a new state machine, dropping old work."""
        self.cancel()
        self.machine = machine

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._future is not None and not self._future.done()

    @property
    def last_error(self) -> Optional[RoutingError]:
        return self._last_error

    @property
    def attempts(self) -> int:
        return self._attempts

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger(self, position, force: bool = False) -> Optional[Future]:
        """
        React to an off-route signal.

        Args:
            position: Current position; becomes the new route's origin.
            force:    Supersede a request already in flight.

        Returns:
            The Future of the submitted request, or None if the signal was
            ignored (debounced, or navigation not active).
        """
        if self._destination is None:
            raise InvalidStateError("Reroute requested without a destination")

        status = self.machine.status
        if status is NavStatus.NAVIGATING:
            self.machine.begin_reroute()
            self._attempts = 0
        elif status is NavStatus.REROUTING:
            if not force:
                logger.debug("Already rerouting, signal ignored.")
                return None
        else:
            return None

        return self._submit(position)

    def retry(self, position) -> Optional[Future]:
        """Explicitly re-issue a failed reroute, superseding anything pending."""
        if self.machine.status is not NavStatus.REROUTING:
            return None
        return self._submit(position)

    def _submit(self, position) -> Future:
        origin = Coord(position.lat, position.lng)
        destination = self._destination
        with self._lock:
            if self._future is not None and not self._future.done():
                self._future.cancel()
                logger.info("Superseding in-flight reroute request.")
            self._generation += 1
            self._retry_at = None
            future = self._executor.submit(self.engine.calculate_route, origin, destination)
            self._future = future
            self._future_generation = self._generation
        logger.info(f"Reroute requested from {origin}.")
        return future

    # ------------------------------------------------------------------
    # Completion: call from the state machine's owner
    # ------------------------------------------------------------------

    def poll(self, position) -> Optional[RerouteOutcome]:
        """
        Apply a finished request, or start a scheduled retry.

        Args:
            position: Latest accepted position; seeds the new route's progress.

        Returns:
            RerouteOutcome when a request finished, otherwise None.
        """
        if self.machine.status is not NavStatus.REROUTING:
            return None

        with self._lock:
            future = self._future
            generation = self._future_generation
            retry_at = self._retry_at

        if future is None or not future.done():
            if future is None and retry_at is not None and self._clock() >= retry_at:
                logger.info(f"Retrying reroute (attempt {self._attempts + 1}).")
                self._submit(position)
            return None

        with self._lock:
            # cancel() or a superseding trigger may have run since the read above
            if self._future is not future or generation != self._generation:
                return None
            self._future = None
        if future.cancelled():
            return None

        error = future.exception()
        if error is None:
            bundle: RouteBundle = future.result()
            self.machine.apply_reroute(bundle.main_route, bundle.instructions, position)
            self._attempts = 0
            self._last_error = None
            return RerouteOutcome(bundle=bundle)

        if not isinstance(error, RoutingError):
            # A router bug must not leave the machine stuck in REROUTING
            logger.error(f"Reroute request crashed ({type(error).__name__}): {error}")
            wrapped = ProviderUnavailable(f"Reroute request failed: {error}")
            wrapped.__cause__ = error
            error = wrapped

        self._attempts += 1
        self._last_error = error
        delay = self.retry_policy.next_delay(self._attempts, error)
        if delay is not None:
            with self._lock:
                self._retry_at = self._clock() + delay
        logger.warning(f"Reroute failed ({type(error).__name__}): {error}")
        return RerouteOutcome(error=error, retry_in_s=delay)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Drop any in-flight request and pending retry."""
        with self._lock:
            if self._future is not None:
                self._future.cancel()
            self._future = None
            self._generation += 1
            self._retry_at = None
        self._attempts = 0
        self._last_error = None

    def shutdown(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
