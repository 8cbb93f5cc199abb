"""Tests for the operation poller.

The clock is simulated: sleep() advances it, so timing assertions are exact
and no test actually waits.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from discovery_mock import MockDiscoveryContext, MockDiscoveryState, mock_discovery_context
from google.api_core import exceptions as gcp_exceptions
from google.cloud import discoveryengine_v1 as discoveryengine

from gemctl.client import DiscoveryEngineClient, StructuralError
from gemctl.config import Config
from gemctl.poller import OperationError, OperationPoller, OperationTimeoutError

ENG1 = "projects/p/locations/us/collections/default_collection/engines/eng1"


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def mock_api() -> Generator[MockDiscoveryContext, None, None]:
    with mock_discovery_context() as ctx:
        yield ctx


@pytest.fixture
def state(mock_api: MockDiscoveryContext) -> MockDiscoveryState:
    return mock_api.state


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poller(mock_api: MockDiscoveryContext, clock: FakeClock) -> OperationPoller:
    client = DiscoveryEngineClient.from_config(Config(project_id="p"))
    return OperationPoller(client, sleep=clock.sleep, clock=clock)


def _start(state: MockDiscoveryState, pending: int = 0, error: tuple[int, str] | None = None) -> str:
    state.operation_pending_polls = pending
    state.operation_error = error
    return state.start_operation(ENG1, "create-engine", discoveryengine.Engine(name=ENG1)).name


class TestOperationPoller:
    """Tests for OperationPoller.wait()."""

    def test_done_immediately(self, state: MockDiscoveryState, poller: OperationPoller, clock: FakeClock) -> None:
        name = _start(state)

        result = poller.wait(name, "fallback")

        assert result == ENG1
        assert state.operations[name].polls == 1
        assert clock.sleeps == []

    def test_done_after_polls(self, state: MockDiscoveryState, poller: OperationPoller, clock: FakeClock) -> None:
        name = _start(state, pending=3)

        result = poller.wait(name, "fallback", timeout=300, interval=5)

        assert result == ENG1
        assert state.operations[name].polls == 4
        assert clock.sleeps == [5, 5, 5]
        assert len(state.calls_for("get_operation", name)) == 4

    def test_fallback_name_when_response_has_none(self, state: MockDiscoveryState, poller: OperationPoller) -> None:
        name = _start(state)
        state.operations[name].resource = None

        assert poller.wait(name, ENG1) == ENG1

    @pytest.mark.parametrize("pending", [0, 1, 4])
    def test_error_after_k_pending_polls(
        self, state: MockDiscoveryState, poller: OperationPoller, clock: FakeClock, pending: int
    ) -> None:
        """Test that k not-done polls then an error raise after k + 1 polls."""
        name = _start(state, pending=pending, error=(3, "invalid data store"))

        with pytest.raises(OperationError) as exc_info:
            poller.wait(name, "fallback", timeout=300, interval=5)

        assert not isinstance(exc_info.value, OperationTimeoutError)
        assert exc_info.value.code == 3
        assert "invalid data store" in str(exc_info.value)
        assert state.operations[name].polls == pending + 1
        assert clock.sleeps == [5] * pending

    def test_timeout(self, state: MockDiscoveryState, poller: OperationPoller, clock: FakeClock) -> None:
        """Test that a never-finishing operation times out with no poll after the deadline."""
        name = _start(state, pending=1000)

        with pytest.raises(OperationTimeoutError) as exc_info:
            poller.wait(name, "fallback", timeout=20, interval=5)

        # Polls at t=0, 5, 10, 15; t=20 is the deadline
        assert state.operations[name].polls == 4
        assert clock.now == 20
        assert isinstance(exc_info.value, TimeoutError)
        assert isinstance(exc_info.value, OperationError)
        assert exc_info.value.timeout_seconds == 20

    def test_last_sleep_stops_at_deadline(
        self, state: MockDiscoveryState, poller: OperationPoller, clock: FakeClock
    ) -> None:
        """Test that a budget not divisible by the interval is not overshot."""
        name = _start(state, pending=1000)

        with pytest.raises(OperationTimeoutError):
            poller.wait(name, "fallback", timeout=12, interval=5)

        assert clock.sleeps == [5, 5, 2]
        assert clock.now == 12
        assert state.operations[name].polls == 3

    @pytest.mark.parametrize(
        ("timeout", "interval"),
        [(300, 0), (300, -1), (0, 5), (-10, 5)],
    )
    def test_non_positive_bounds_rejected(
        self, state: MockDiscoveryState, poller: OperationPoller, timeout: float, interval: float
    ) -> None:
        name = _start(state, pending=1000)

        with pytest.raises(ValueError):
            poller.wait(name, "fallback", timeout=timeout, interval=interval)

        assert state.calls_for("get_operation") == []

    def test_read_failure_propagates(self, state: MockDiscoveryState, poller: OperationPoller) -> None:
        name = _start(state)
        state.inject_failure("get_operation", gcp_exceptions.PermissionDenied("denied"))

        with pytest.raises(StructuralError):
            poller.wait(name, "fallback")
