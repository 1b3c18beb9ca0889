import threading
import time

import pytest

from navigation.tracking.errors import InvalidStateError, NoRouteFound, ProviderUnavailable
from navigation.tracking.models import NavStatus
from navigation.tracking.reroute import (
    ExponentialBackoff,
    FixedBackoff,
    NoRetry,
    RerouteCoordinator,
)
from navigation.tracking.route_engine import RouteEngine, parse_response
from navigation.tracking.route_tracker import NavigationStateMachine


def wait_idle(coordinator, timeout=5.0):
    deadline = time.monotonic() + timeout
    while coordinator.in_flight:
        assert time.monotonic() < deadline, "reroute request did not finish"
        time.sleep(0.01)


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def machine(config, body, points, make_fix):
    bundle = parse_response(body)
    m = NavigationStateMachine(config)
    m.start(bundle.main_route, bundle.instructions, points[0])
    m.update(make_fix(points[1], 10))
    m.update(make_fix(points[2], 20))
    return m


@pytest.fixture
def make_coordinator(config, machine, points, make_router):
    """Coordinator factory: make_coordinator(*router_responses, retry_policy=None, clock=None)."""
    coordinators = []

    def build(*responses, retry_policy=None, clock=None):
        router = make_router(*responses)
        kwargs = {"clock": clock} if clock is not None else {}
        coordinator = RerouteCoordinator(RouteEngine(router, config), machine, retry_policy, **kwargs)
        coordinator.set_destination(points[-1])
        coordinators.append(coordinator)
        return coordinator, router

    yield build
    for c in coordinators:
        c.shutdown()


def test_trigger_requires_destination(config, machine, make_router, make_fix, points):
    coordinator = RerouteCoordinator(RouteEngine(make_router(), config), machine)
    try:
        with pytest.raises(InvalidStateError):
            coordinator.trigger(make_fix(points[2], 20))
    finally:
        coordinator.shutdown()


def test_trigger_ignored_unless_navigating(config, make_coordinator, make_body, make_fix, points):
    coordinator, router = make_coordinator(make_body())
    coordinator.bind(NavigationStateMachine(config))

    assert coordinator.trigger(make_fix(points[2], 20)) is None
    assert router.calls == []


def test_successful_reroute_swaps_route(make_coordinator, machine, make_body, make_fix, points):
    coordinator, router = make_coordinator(make_body(points=points[2:], distance=4800.0))
    history = machine.speed_history
    here = make_fix(points[2], 20)

    future = coordinator.trigger(here)
    assert machine.status is NavStatus.REROUTING
    future.result(timeout=5)

    outcome = coordinator.poll(here)
    assert outcome.success
    assert machine.status is NavStatus.NAVIGATING
    state = machine.state
    assert state.total_distance_meters == 4800.0
    assert state.covered_distance_meters == 0.0
    assert state.current_instruction_index == 0
    assert machine.speed_history == history

    origin, destination = router.calls[0]
    assert origin.lat == pytest.approx(points[2].lat)
    assert destination == points[-1]

    # nothing left to apply
    assert coordinator.poll(here) is None


def test_signals_while_rerouting_are_debounced(make_coordinator, make_body, make_fix, points):
    coordinator, router = make_coordinator(make_body())
    router.gate = threading.Event()
    here = make_fix(points[2], 20)

    first = coordinator.trigger(here)
    assert coordinator.trigger(here) is None
    assert coordinator.trigger(make_fix(points[3], 30)) is None

    router.gate.set()
    first.result(timeout=5)
    assert len(router.calls) == 1


def test_forced_trigger_supersedes_pending_request(make_coordinator, machine, make_body, make_fix, points):
    coordinator, router = make_coordinator(make_body(distance=1111.0), make_body(distance=2222.0))
    router.gate = threading.Event()
    here = make_fix(points[2], 20)

    first = coordinator.trigger(here)
    second = coordinator.trigger(here, force=True)
    assert second is not None and second is not first

    router.gate.set()
    second.result(timeout=5)
    wait_idle(coordinator)

    outcome = coordinator.poll(here)
    assert outcome.success
    assert machine.state.total_distance_meters == 2222.0
    assert coordinator.poll(here) is None


def test_failure_stays_rerouting_and_reports(make_coordinator, machine, make_body, make_fix, points):
    coordinator, router = make_coordinator(ProviderUnavailable("offline"), make_body(distance=3000.0))
    here = make_fix(points[2], 20)

    coordinator.trigger(here).exception(timeout=5)
    outcome = coordinator.poll(here)

    assert not outcome.success
    assert isinstance(outcome.error, ProviderUnavailable)
    assert outcome.retry_in_s is None
    assert coordinator.last_error is outcome.error
    assert coordinator.attempts == 1
    assert machine.status is NavStatus.REROUTING

    # NoRetry: nothing happens until an explicit retry
    assert coordinator.poll(here) is None
    assert len(router.calls) == 1

    coordinator.retry(here).result(timeout=5)
    assert coordinator.poll(here).success
    assert machine.status is NavStatus.NAVIGATING
    assert machine.state.total_distance_meters == 3000.0
    assert coordinator.last_error is None


def test_fixed_backoff_retries_on_schedule(make_coordinator, machine, make_fix, points):
    clock = Clock()
    coordinator, router = make_coordinator(
        NoRouteFound("nothing"), retry_policy=FixedBackoff(delay_s=5.0, max_attempts=2), clock=clock,
    )
    here = make_fix(points[2], 20)

    coordinator.trigger(here).exception(timeout=5)
    assert coordinator.poll(here).retry_in_s == 5.0

    clock.now = 1.0
    assert coordinator.poll(here) is None
    assert len(router.calls) == 1

    clock.now = 6.0
    assert coordinator.poll(here) is None      # starts the retry
    wait_idle(coordinator)
    assert len(router.calls) == 2

    outcome = coordinator.poll(here)
    assert isinstance(outcome.error, NoRouteFound)
    assert outcome.retry_in_s is None          # attempts exhausted
    assert coordinator.attempts == 2
    assert machine.status is NavStatus.REROUTING


def test_cancel_discards_result(make_coordinator, machine, make_body, make_fix, points):
    coordinator, router = make_coordinator(make_body(distance=1234.0))
    router.gate = threading.Event()
    here = make_fix(points[2], 20)

    future = coordinator.trigger(here)
    coordinator.cancel()
    router.gate.set()
    wait_idle(coordinator)
    if not future.cancelled():
        future.result(timeout=5)

    assert coordinator.poll(here) is None
    assert machine.state.total_distance_meters == 5000.0


def test_router_crash_is_reported_as_provider_unavailable(make_coordinator, machine, make_fix, points):
    coordinator, _ = make_coordinator(RuntimeError("bug"))
    here = make_fix(points[2], 20)

    coordinator.trigger(here).exception(timeout=5)
    outcome = coordinator.poll(here)

    assert not outcome.success
    assert isinstance(outcome.error, ProviderUnavailable)
    assert isinstance(outcome.error.__cause__, RuntimeError)
    assert coordinator.last_error is outcome.error
    assert machine.status is NavStatus.REROUTING
    assert not coordinator.in_flight


def test_retry_policies():
    assert NoRetry().next_delay(1, NoRouteFound()) is None

    fixed = FixedBackoff(delay_s=2.0, max_attempts=3)
    assert [fixed.next_delay(n, NoRouteFound()) for n in (1, 2, 3)] == [2.0, 2.0, None]

    expo = ExponentialBackoff(base_s=1.0, factor=2.0, max_delay_s=5.0, max_attempts=5)
    assert [expo.next_delay(n, NoRouteFound()) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 5.0, None]
