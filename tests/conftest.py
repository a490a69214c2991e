"""Shared pytest fixtures for the relaypool tests.

Provides reusable fakes and configuration objects to keep tests
deterministic and isolated: no test here touches the network.
"""

import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

from relaypool.config import AppConfig
from relaypool.network.registry import HealthRecord, Registry
from relaypool.network.tester import ProbeRequest, ProbeResponse

# Reference instant of the seven-record fixture, in epoch seconds.
FIXTURE_NOW = 1392490321.683


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Application config fixture pointing logs at a temporary directory."""
    return AppConfig(
        log_directory=tmp_path,
        log_level="INFO",
    )


def seven_records() -> Dict[str, HealthRecord]:
    """Seven relays covering every health state the ranking cares about."""
    return {
        # untested
        "http://190.78.61.203:8080": HealthRecord(created=1392490312.878),
        # tested but failed, oldest
        "http://190.78.79.100:8080": HealthRecord(
            created=1392490312.878, last_tested=1392490313.497
        ),
        # tested but failed, more recently
        "http://190.72.159.228:8080": HealthRecord(
            created=1392490312.878, last_tested=1392490320.683
        ),
        # successful, lower latency
        "http://190.7.157.90:8080": HealthRecord(
            created=1392490312.878,
            last_tested=1392490320.683,
            last_successful=1392490320.683,
            latency=7.8,
        ),
        # successful, higher latency
        "http://190.39.85.152:8080": HealthRecord(
            created=1392490312.878,
            last_tested=1392490321.683,
            last_successful=1392490321.683,
            latency=8.8,
        ),
        # lowest latency but failed since its last success
        "http://190.7.157.92:8080": HealthRecord(
            created=1392490312.878,
            last_tested=1392490320.883,
            last_successful=1392490320.683,
            latency=0.6,
        ),
        # untested two
        "http://190.39.169.53:8080": HealthRecord(created=1392490312.878),
    }


@pytest.fixture
def records() -> Dict[str, HealthRecord]:
    return seven_records()


@pytest.fixture
def registry() -> Registry:
    return Registry(seven_records())


Outcome = Union[int, BaseException]


class FakeTransport:
    """In-memory ``Transport``: answers per relay with a status code or an exception.

    Relays without an explicit outcome get ``default``. ``gate`` (when set)
    blocks every send until released so tests can hold probes in flight.
    """

    def __init__(
        self,
        outcomes: Optional[Dict[str, Outcome]] = None,
        *,
        default: Outcome = 200,
        elapsed: float = 0.25,
        latencies: Optional[Dict[str, float]] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.outcomes = dict(outcomes or {})
        self.default = default
        self.elapsed = elapsed
        self.latencies = dict(latencies or {})
        self.gate = gate
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def send(self, request: ProbeRequest, relay: str, timeout: float) -> ProbeResponse:
        with self._lock:
            self.calls.append((request, relay, timeout))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(5.0)
            outcome = self.outcomes.get(relay, self.default)
            if isinstance(outcome, BaseException):
                raise outcome
            return ProbeResponse(
                status_code=outcome, elapsed=self.latencies.get(relay, self.elapsed)
            )
        finally:
            with self._lock:
                self.in_flight -= 1

    @property
    def relays(self) -> List[str]:
        return [relay for _, relay, _ in self.calls]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    """Factory fixture for ``FakeTransport`` with per-test outcomes."""
    return FakeTransport


@pytest.fixture
def fixture_now() -> float:
    return FIXTURE_NOW
