"""Relay pool controller: periodic refresh, readiness, and the query API.

Typical use:

    pool = RelayPool().source(TextListSource(LIST_URL)).test(my_probe)
    with pool:
        relays = pool.get(timeout=30.0)

A refresh cycle discovers relays (unless the pool is already well stocked),
then probes them until at least one works. ``get`` waits for that first
success (or a timeout) and returns the usable relays, best first.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from relaypool.events import READY, REFRESH_ERROR, EventEmitter, Listener
from relaypool.logging_utils import perf
from relaypool.network import ranking
from relaypool.network.readiness import PendingGet, ReadinessLatch
from relaypool.network.registry import HealthRecord, Registry
from relaypool.network.sources import DiscoverySource, SourceAggregator, SourceLike, as_source
from relaypool.network.tester import (
    HealthTester,
    ProbeTemplate,
    RequestsTransport,
    Transport,
    default_probe,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryPolicy:
    """When to skip discovery because the pool already has enough good relays.

    Discovery is skipped when more than ``min_relays`` relays pass the filter
    with a ``max_latency`` second ceiling and the best of them has not failed
    since its last success.
    """

    max_latency: float = 15.0
    min_relays: int = 4

    def should_skip(self, records: Dict[str, HealthRecord], now: Optional[float] = None) -> bool:
        whitelist = ranking.filter_relays(
            records, ranking.FilterOptions(max_latency=self.max_latency, now=now)
        )
        if len(whitelist) <= self.min_relays:
            return False
        return not ranking.is_stale(records[whitelist[0]])


@dataclass(frozen=True)
class PoolConfig:
    """Tuning knobs for ``RelayPool``. Durations are in seconds."""

    refresh_interval: float = 60.0
    probe_timeout: float = 20.0
    test_limit: int = 50
    source_concurrency: int = 10
    test_concurrency: int = 10
    retest_after: float = 60.0
    discovery_policy: DiscoveryPolicy = field(default_factory=DiscoveryPolicy)


class _RefreshTimer(threading.Thread):
    """Daemon thread calling ``fn`` every ``interval`` seconds until stopped."""

    def __init__(self, interval: float, fn: Callable[[], Any]) -> None:
        super().__init__(name="relaypool-refresh", daemon=True)
        self.interval = interval
        self._fn = fn
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            self._fn()

    def cancel(self) -> None:
        self._stopped.set()


class RelayPool:
    """Live pool of relays ranked by health and latency."""

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        *,
        transport: Optional[Transport] = None,
        emitter: Optional[EventEmitter] = None,
        registry: Optional[Registry] = None,
    ) -> None:
        self._config = config or PoolConfig()
        self._emitter = emitter or EventEmitter()
        self._registry = registry or Registry()
        self._sources: List[DiscoverySource] = []
        self._ready = False
        self._latch = ReadinessLatch()
        self._refresh_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: Optional[_RefreshTimer] = None
        self._aggregator = SourceAggregator(
            self._registry, self._emitter, self._config.source_concurrency
        )
        self._tester = HealthTester(
            self._registry,
            self._emitter,
            transport or RequestsTransport(),
            probe_template=default_probe,
            timeout=self._config.probe_timeout,
            concurrency=self._config.test_concurrency,
            limit=self._config.test_limit,
            retest_after=self._config.retest_after,
            on_success=self._mark_ready,
            on_batch_ready=self._batch_ready,
        )

    # -- configuration -----------------------------------------------------

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def sources(self) -> List[DiscoverySource]:
        return list(self._sources)

    @property
    def ready(self) -> bool:
        """True once any probe has ever succeeded. Never goes back to False."""
        return self._ready

    @property
    def refreshing(self) -> bool:
        return self._refresh_lock.locked()

    @property
    def refresh_interval(self) -> float:
        return self._config.refresh_interval

    def source(self, candidate: SourceLike) -> "RelayPool":
        """Register a discovery source (an object with ``fetch`` or a callable)."""
        self._sources.append(as_source(candidate))
        return self

    def test(self, template: ProbeTemplate) -> "RelayPool":
        """Set the probe template used to test relays."""
        self._tester.probe_template = template
        return self

    def test_every(self, interval: float) -> "RelayPool":
        """Set the refresh interval in seconds and re-arm the refresh timer."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._config = replace(self._config, refresh_interval=interval)
        self._reset_refresh_timer()
        return self

    def on(self, event: str, listener: Listener) -> "RelayPool":
        self._emitter.on(event, listener)
        return self

    def off(self, event: str, listener: Listener) -> "RelayPool":
        self._emitter.off(event, listener)
        return self

    # -- lifecycle ---------------------------------------------------------

    def _reset_refresh_timer(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = _RefreshTimer(self._config.refresh_interval, self._scheduled_refresh)
            self._timer.start()
        LOGGER.debug("Refresh timer armed every %.1fs", self._config.refresh_interval)

    def start(self, refresh_now: bool = True) -> "RelayPool":
        """Arm the periodic refresh timer, optionally kicking off a cycle right away."""
        self._reset_refresh_timer()
        if refresh_now:
            threading.Thread(
                target=self._scheduled_refresh, name="relaypool-initial-refresh", daemon=True
            ).start()
        return self

    def close(self) -> None:
        """Stop the refresh timer. A cycle already running finishes on its own."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def __enter__(self) -> "RelayPool":
        return self.start()

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()

    # -- refresh -----------------------------------------------------------

    def _mark_ready(self, relay: str) -> None:
        if not self._ready:
            LOGGER.info("First working relay found: %s", relay)
        self._ready = True

    def _batch_ready(self) -> None:
        if self._latch.set():
            LOGGER.info("Relay pool is ready")
        self._emitter.emit(READY)

    def _scheduled_refresh(self) -> None:
        try:
            self.refresh()
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Scheduled refresh failed: %s", exc)

    def refresh(self) -> bool:
        """Run one refresh cycle unless one is already running.

        Returns False when the call was dropped because a cycle is in
        progress. A discovery failure is re-raised after ``REFRESH_ERROR`` is
        emitted; a testing failure is only reported.
        """
        if not self._refresh_lock.acquire(blocking=False):
            LOGGER.debug("Refresh already in progress, skipping")
            return False
        try:
            self._refresh_cycle()
        finally:
            self._refresh_lock.release()
        return True

    @perf("pool.refresh", tags={"component": "pool"})
    def _refresh_cycle(self) -> None:
        LOGGER.debug("Refreshing sources ..")
        policy = self._config.discovery_policy
        try:
            if policy.should_skip(self._registry.snapshot()):
                LOGGER.info("Skipping discovery, the pool already has enough good relays")
            else:
                self._aggregator.run(list(self._sources))
        except Exception as exc:
            LOGGER.error("Error refreshing sources: %s", exc)
            self._emitter.emit(REFRESH_ERROR, exc)
            raise

        LOGGER.debug("Refreshed sources, testing relays ..")
        try:
            self._tester.run(lambda: self._ready)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Error testing relays")
            self._emitter.emit(REFRESH_ERROR, exc)
            return
        LOGGER.debug("Finished testing relays")

    # -- registry access ---------------------------------------------------

    def add(self, relay: str) -> "RelayPool":
        self._registry.add(relay)
        return self

    def update(self, relay: str, success: bool) -> None:
        """Caller feedback: record that ``relay`` just worked (or did not)."""
        self._registry.update(relay, success)

    def blacklist(
        self, relay: str, duration: Union[bool, float], now: Optional[float] = None
    ) -> None:
        """Ban ``relay`` permanently (``True``) or for ``duration`` seconds from ``now``."""
        self._registry.blacklist(relay, duration, now=now)

    def trim(self, allow_list: Iterable[str]) -> int:
        """Forget every relay not in ``allow_list``."""
        return self._registry.trim(allow_list)

    def snapshot(self) -> Dict[str, HealthRecord]:
        return self._registry.snapshot()

    def test_sort(self, now: Optional[float] = None) -> List[str]:
        """Relays in the order the next test batch would probe them."""
        return ranking.test_sort(self._registry.snapshot(), now=now)

    def filter(
        self,
        max_age: Optional[float] = None,
        max_latency: Optional[float] = None,
        now: Optional[float] = None,
    ) -> List[str]:
        """Usable relays right now, best first, without waiting for readiness."""
        options = ranking.FilterOptions(
            max_age=ranking.DEFAULT_MAX_AGE if max_age is None else max_age,
            max_latency=ranking.DEFAULT_MAX_LATENCY if max_latency is None else max_latency,
            now=now,
        )
        return ranking.filter_relays(self._registry.snapshot(), options)

    # -- query -------------------------------------------------------------

    def get(
        self,
        max_age: Optional[float] = None,
        max_latency: Optional[float] = None,
        timeout: Optional[float] = None,
        now: Optional[float] = None,
    ) -> List[str]:
        """Wait until the pool is ready (or ``timeout`` seconds pass) and return relays.

        Never raises; after a timeout the list reflects whatever is known at
        that moment and may be empty.
        """
        if not self._latch.wait(timeout):
            LOGGER.info("get timed out after %.1fs before the pool was ready", timeout)
        return self.filter(max_age=max_age, max_latency=max_latency, now=now)

    def get_async(
        self,
        callback: Callable[[List[str]], Any],
        max_age: Optional[float] = None,
        max_latency: Optional[float] = None,
        timeout: Optional[float] = None,
        now: Optional[float] = None,
    ) -> PendingGet:
        """Non-blocking ``get``: ``callback(relays)`` runs exactly once on another thread."""
        pending = PendingGet(
            lambda: self.filter(max_age=max_age, max_latency=max_latency, now=now),
            callback,
        )
        return pending.arm(self._latch, timeout)


__all__ = ["DiscoveryPolicy", "PoolConfig", "RelayPool"]
