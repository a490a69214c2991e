"""Relay health probing.

Each probe sends a small request through a candidate relay and records the
outcome in the registry:

1) Build the request from the pluggable probe template.
2) Send it through the relay with the configured timeout.
3) Classify: 2xx is a success, any other status a status failure, and any
   raised error a transport failure.

``HealthTester.run`` keeps testing batches of the most promising relays until
the pool has a working relay or nothing fresh is left to try.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

from relaypool.events import (
    PROXY_STATUS_FAILURE,
    PROXY_TEST_FAILURE,
    PROXY_TEST_SUCCESS,
    EventEmitter,
)
from relaypool.logging_utils import perf
from relaypool.network import ranking
from relaypool.network.registry import Registry

LOGGER = logging.getLogger(__name__)

DEFAULT_TEST_URL = "https://google.com"
USER_AGENT = "relay-pool/1.0"

SUCCESS = "success"
STATUS_FAILURE = "status_failure"
TRANSPORT_FAILURE = "transport_failure"


@dataclass
class ProbeRequest:
    """Template for a probe request; the tester adds the relay and timeout.

    Attributes:
        url: Target URL fetched through the relay.
        method: HTTP method.
        headers: Extra request headers.
        extra: Additional keyword arguments passed to the transport
            (e.g. ``params`` or ``allow_redirects`` for Requests).
    """

    url: str = DEFAULT_TEST_URL
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProbeResponse:
    status_code: int
    elapsed: float


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe.

    Attributes:
        relay: Relay identifier that was probed.
        outcome: One of ``SUCCESS``, ``STATUS_FAILURE`` or ``TRANSPORT_FAILURE``.
        status_code: HTTP status observed, if a response arrived.
        latency: Seconds the probe took.
        error: Error text for transport failures.
    """

    relay: str
    outcome: str
    status_code: Optional[int]
    latency: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == SUCCESS


ProbeTemplate = Callable[[], ProbeRequest]


def default_probe() -> ProbeRequest:
    """Probe template used until the caller installs one."""
    return ProbeRequest(url=DEFAULT_TEST_URL, method="GET")


class Transport(Protocol):
    """Sends a probe request through a relay; raises on transport failure."""

    def send(self, request: ProbeRequest, relay: str, timeout: float) -> ProbeResponse:
        ...


def _proxies_mapping(relay: str) -> Dict[str, str]:
    return {"http": relay, "https": relay}


class RequestsTransport:
    """``Transport`` backed by a Requests session."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session or requests.Session()

    def send(self, request: ProbeRequest, relay: str, timeout: float) -> ProbeResponse:
        headers = {"User-Agent": USER_AGENT}
        headers.update(request.headers)
        start_ns = time.perf_counter_ns()
        resp = self._session.request(
            request.method,
            request.url,
            headers=headers,
            proxies=_proxies_mapping(relay),
            timeout=timeout,
            **request.extra,
        )
        elapsed = (time.perf_counter_ns() - start_ns) / 1_000_000_000.0
        resp.close()
        return ProbeResponse(status_code=resp.status_code, elapsed=elapsed)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "RequestsTransport":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


class HealthTester:
    """Probes the most promising relays in bounded-concurrency batches."""

    def __init__(
        self,
        registry: Registry,
        emitter: EventEmitter,
        transport: Transport,
        *,
        probe_template: ProbeTemplate = default_probe,
        timeout: float = 20.0,
        concurrency: int = 10,
        limit: int = 50,
        retest_after: float = 60.0,
        on_success: Optional[Callable[[str], None]] = None,
        on_batch_ready: Optional[Callable[[], None]] = None,
    ) -> None:
        self._registry = registry
        self._emitter = emitter
        self._transport = transport
        self.probe_template = probe_template
        self.timeout = timeout
        self.concurrency = max(1, int(concurrency))
        self.limit = max(1, int(limit))
        self.retest_after = retest_after
        self._on_success = on_success
        self._on_batch_ready = on_batch_ready

    def probe(self, relay: str) -> ProbeResult:
        """Probe ``relay`` once, record the outcome and emit the matching event."""
        LOGGER.debug("Testing relay %s ..", relay)
        start_ns = time.perf_counter_ns()
        try:
            request = self.probe_template()
            response = self._transport.send(request, relay, self.timeout)
        except Exception as exc:  # noqa: BLE001
            elapsed = (time.perf_counter_ns() - start_ns) / 1_000_000_000.0
            self._registry.update(relay, False)
            LOGGER.debug("Relay %s test error %s", relay, exc)
            self._emitter.emit(PROXY_TEST_FAILURE, relay, exc)
            return ProbeResult(relay, TRANSPORT_FAILURE, None, elapsed, str(exc))

        if response.status_code // 100 != 2:
            self._registry.update(relay, False)
            LOGGER.debug("Relay %s bad status %d", relay, response.status_code)
            self._emitter.emit(PROXY_STATUS_FAILURE, relay, response.status_code)
            return ProbeResult(relay, STATUS_FAILURE, response.status_code, response.elapsed)

        self._registry.update(relay, True, latency=response.elapsed)
        LOGGER.debug("Relay %s test successful in %.3fs", relay, response.elapsed)
        if self._on_success is not None:
            self._on_success(relay)
        self._emitter.emit(PROXY_TEST_SUCCESS, relay, self._registry.get(relay))
        return ProbeResult(relay, SUCCESS, response.status_code, response.elapsed)

    @perf("tester.test_batch", tags={"component": "tester"})
    def test_batch(self) -> List[ProbeResult]:
        """Probe the top ``limit`` relays by test priority.

        ``on_batch_ready`` fires once the whole batch is done, and only if at
        least one probe in it succeeded.
        """
        to_test = ranking.test_sort(self._registry.snapshot())[: self.limit]
        if not to_test:
            LOGGER.info("No relays to test")
            return []

        results: List[ProbeResult] = []
        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            futures = [executor.submit(self.probe, relay) for relay in to_test]
            for fut in as_completed(futures):
                results.append(fut.result())

        passed = sum(1 for r in results if r.ok)
        LOGGER.info("Tested %d relays, %d passed", len(results), passed)
        if passed and self._on_batch_ready is not None:
            self._on_batch_ready()
        return results

    def untested(self, now: Optional[float] = None) -> List[str]:
        """Return non-blacklisted relays never tested or not tested for ``retest_after`` seconds."""
        reference = time.time() if now is None else now
        return [
            relay
            for relay, record in self._registry.snapshot().items()
            if not ranking.is_blacklisted(record, reference)
            and (record.last_tested is None or reference - record.last_tested > self.retest_after)
        ]

    def run(self, is_ready: Callable[[], bool]) -> int:
        """Test batches until ``is_ready()`` or no fresh candidates remain.

        Returns the number of batches run.
        """
        batches = 0
        while True:
            results = self.test_batch()
            batches += 1
            if is_ready():
                break
            if not results:
                break
            remaining = self.untested()
            if not remaining:
                LOGGER.info("No working relay found and no untested candidates left")
                break
            LOGGER.info("Pool not ready, testing more candidates: %d", len(remaining))
        return batches


__all__ = [
    "DEFAULT_TEST_URL",
    "HealthTester",
    "ProbeRequest",
    "ProbeResponse",
    "ProbeResult",
    "ProbeTemplate",
    "RequestsTransport",
    "STATUS_FAILURE",
    "SUCCESS",
    "TRANSPORT_FAILURE",
    "Transport",
    "default_probe",
]
