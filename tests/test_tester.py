import threading
from typing import List

import requests

import relaypool.network.tester as tester_mod
from relaypool.events import (
    PROXY_STATUS_FAILURE,
    PROXY_TEST_FAILURE,
    PROXY_TEST_SUCCESS,
    EventEmitter,
)
from relaypool.network.registry import Registry
from relaypool.network.tester import HealthTester, ProbeRequest


def _tester(registry: Registry, transport, **kwargs) -> HealthTester:
    kwargs.setdefault("timeout", 3.0)
    kwargs.setdefault("concurrency", 4)
    return HealthTester(registry, kwargs.pop("emitter", EventEmitter()), transport, **kwargs)


def test_probe_success_updates_record_and_emits(make_transport) -> None:
    registry = Registry().add("http://1.1.1.1:80", now=0.0)
    emitter = EventEmitter()
    seen = []
    emitter.on(PROXY_TEST_SUCCESS, lambda relay, record: seen.append((relay, record.latency)))
    transport = make_transport(elapsed=0.4)

    result = _tester(registry, transport, emitter=emitter).probe("http://1.1.1.1:80")

    assert result.ok and result.outcome == tester_mod.SUCCESS
    record = registry.get("http://1.1.1.1:80")
    assert record.last_successful == record.last_tested
    assert record.latency == 0.4
    assert seen == [("http://1.1.1.1:80", 0.4)]


def test_probe_fills_relay_and_timeout_from_template(make_transport) -> None:
    registry = Registry().add("http://1.1.1.1:80", now=0.0)
    transport = make_transport()
    tester = _tester(
        registry,
        transport,
        probe_template=lambda: ProbeRequest(url="https://example.test/ip", method="HEAD"),
        timeout=7.5,
    )
    tester.probe("http://1.1.1.1:80")

    request, relay, timeout = transport.calls[0]
    assert request.url == "https://example.test/ip"
    assert request.method == "HEAD"
    assert relay == "http://1.1.1.1:80"
    assert timeout == 7.5


def test_probe_status_failure(make_transport) -> None:
    registry = Registry().add("r", now=0.0)
    emitter = EventEmitter()
    statuses = []
    emitter.on(PROXY_STATUS_FAILURE, lambda relay, status: statuses.append(status))

    result = _tester(registry, make_transport(default=503), emitter=emitter).probe("r")

    assert result.outcome == tester_mod.STATUS_FAILURE
    assert result.status_code == 503
    record = registry.get("r")
    assert record.last_tested is not None
    assert record.last_successful is None
    assert statuses == [503]


def test_probe_transport_failure(make_transport) -> None:
    registry = Registry().add("r", now=0.0)
    emitter = EventEmitter()
    failures = []
    emitter.on(PROXY_TEST_FAILURE, lambda relay, exc: failures.append(type(exc)))
    transport = make_transport(default=requests.ConnectTimeout("timed out"))

    result = _tester(registry, transport, emitter=emitter).probe("r")

    assert result.outcome == tester_mod.TRANSPORT_FAILURE
    assert "timed out" in (result.error or "")
    assert registry.get("r").last_successful is None
    assert failures == [requests.ConnectTimeout]


def test_probe_template_errors_count_as_transport_failures(make_transport) -> None:
    registry = Registry().add("r", now=0.0)

    def broken_template() -> ProbeRequest:
        raise ValueError("bad template")

    result = _tester(registry, make_transport(), probe_template=broken_template).probe("r")
    assert result.outcome == tester_mod.TRANSPORT_FAILURE
    assert registry.get("r").last_tested is not None


def test_test_batch_limits_candidates_and_concurrency(make_transport) -> None:
    registry = Registry()
    for i in range(12):
        registry.add(f"http://10.0.0.{i}:80", now=0.0)
    transport = make_transport(default=500)

    results = _tester(registry, transport, limit=5, concurrency=2).test_batch()

    assert len(results) == 5
    assert transport.relays and len(transport.relays) == 5
    assert transport.max_in_flight <= 2


def test_batch_ready_fires_after_whole_batch(make_transport) -> None:
    registry = Registry()
    for i in range(3):
        registry.add(f"http://10.0.0.{i}:80", now=0.0)
    completed: List[str] = []
    observed_at_ready: List[int] = []
    successes: List[str] = []

    transport = make_transport(outcomes={"http://10.0.0.1:80": 200}, default=502)
    emitter = EventEmitter()
    emitter.on(PROXY_TEST_SUCCESS, lambda relay, record: completed.append(relay))
    emitter.on(PROXY_STATUS_FAILURE, lambda relay, status: completed.append(relay))

    tester = _tester(
        registry,
        transport,
        emitter=emitter,
        on_success=successes.append,
        on_batch_ready=lambda: observed_at_ready.append(len(completed)),
    )
    tester.test_batch()

    assert successes == ["http://10.0.0.1:80"]
    assert observed_at_ready == [3]


def test_batch_ready_not_fired_without_success(make_transport) -> None:
    registry = Registry().add("r", now=0.0)
    fired = []
    _tester(registry, make_transport(default=404), on_batch_ready=lambda: fired.append(1)).test_batch()
    assert fired == []


def test_run_keeps_testing_until_ready(make_transport) -> None:
    registry = Registry()
    for i in range(6):
        registry.add(f"http://10.0.0.{i}:80", now=0.0)
    # Only the last relay in registration order works.
    transport = make_transport(outcomes={"http://10.0.0.5:80": 200}, default=500)
    state = {"ready": False}

    def on_success(relay: str) -> None:
        state["ready"] = True

    tester = _tester(registry, transport, limit=2, concurrency=1, on_success=on_success)
    batches = tester.run(lambda: state["ready"])

    assert state["ready"] is True
    assert batches == 3
    assert len(transport.calls) == 6


def test_run_stops_when_everything_was_recently_tested(make_transport) -> None:
    registry = Registry()
    for i in range(4):
        registry.add(f"http://10.0.0.{i}:80", now=0.0)
    transport = make_transport(default=requests.ConnectionError("refused"))

    batches = _tester(registry, transport, limit=3).run(lambda: False)

    assert batches == 2
    assert sorted(set(transport.relays)) == sorted(registry.ids())


def test_run_stops_once_ready_after_first_batch(make_transport) -> None:
    registry = Registry()
    for i in range(4):
        registry.add(f"http://10.0.0.{i}:80", now=0.0)
    transport = make_transport()

    batches = _tester(registry, transport, limit=2).run(lambda: True)

    assert batches == 1
    assert len(transport.calls) == 2


def test_untested_skips_blacklisted_relays(make_transport) -> None:
    registry = Registry().add("banned", now=0.0).add("fresh", now=0.0).add("recent", now=0.0)
    registry.blacklist("banned", True)
    registry.update("recent", False, now=1000.0)

    tester = _tester(registry, make_transport(), retest_after=60.0)
    assert tester.untested(now=1030.0) == ["fresh"]
    assert tester.untested(now=1061.0) == ["fresh", "recent"]


def test_requests_transport_routes_through_relay() -> None:
    captured = {}

    class FakeResponse:
        status_code = 204

        def close(self) -> None:
            captured["closed"] = True

    class FakeSession:
        def request(self, method, url, **kwargs):
            captured.update(kwargs, method=method, url=url)
            return FakeResponse()

        def close(self) -> None:
            pass

    transport = tester_mod.RequestsTransport(session=FakeSession())  # type: ignore[arg-type]
    response = transport.send(
        ProbeRequest(url="https://example.test", headers={"X-Probe": "1"}, extra={"allow_redirects": False}),
        "http://1.2.3.4:8080",
        timeout=4.0,
    )

    assert response.status_code == 204
    assert response.elapsed >= 0.0
    assert captured["proxies"] == {"http": "http://1.2.3.4:8080", "https": "http://1.2.3.4:8080"}
    assert captured["timeout"] == 4.0
    assert captured["method"] == "GET"
    assert captured["headers"]["X-Probe"] == "1"
    assert captured["allow_redirects"] is False
    assert captured["closed"] is True


def test_probes_from_many_threads_do_not_lose_updates(make_transport) -> None:
    registry = Registry()
    relays = [f"http://10.0.1.{i}:80" for i in range(40)]
    for relay in relays:
        registry.add(relay, now=0.0)
    gate = threading.Event()
    transport = make_transport(gate=gate)
    tester = _tester(registry, transport, limit=40, concurrency=8)

    threading.Timer(0.05, gate.set).start()
    results = tester.test_batch()

    assert len(results) == 40
    assert all(registry.get(relay).last_successful is not None for relay in relays)
