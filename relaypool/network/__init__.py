"""Relay pool engine: registry, discovery, probing, ranking and the pool itself.

Exports:
- ``RelayPool``: periodic refresh and readiness-gated ``get``.
- ``Registry`` / ``HealthRecord``: per-relay health state and blacklist.
- ``test_sort`` / ``filter_relays``: probe order and exposure order.
- ``TextListSource`` / ``FunctionSource``: discovery sources.
- ``RequestsTransport`` / ``ProbeRequest``: probing through a relay.
"""

from relaypool.network.pool import DiscoveryPolicy, PoolConfig, RelayPool
from relaypool.network.ranking import FilterOptions, filter_relays, test_sort
from relaypool.network.readiness import PendingGet, ReadinessLatch
from relaypool.network.registry import FOREVER, HealthRecord, Registry
from relaypool.network.sources import (
    DiscoverySource,
    FunctionSource,
    SourceAggregator,
    TextListSource,
    fetch_proxy_list,
)
from relaypool.network.tester import (
    HealthTester,
    ProbeRequest,
    ProbeResponse,
    ProbeResult,
    RequestsTransport,
    Transport,
)

__all__ = [
    "DiscoveryPolicy",
    "DiscoverySource",
    "FOREVER",
    "FilterOptions",
    "FunctionSource",
    "HealthRecord",
    "HealthTester",
    "PendingGet",
    "PoolConfig",
    "ProbeRequest",
    "ProbeResponse",
    "ProbeResult",
    "ReadinessLatch",
    "Registry",
    "RelayPool",
    "RequestsTransport",
    "SourceAggregator",
    "TextListSource",
    "Transport",
    "fetch_proxy_list",
    "filter_relays",
    "test_sort",
]
