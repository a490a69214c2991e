"""Ranking and filtering of relays from a registry snapshot.

Two orderings are computed here:

- ``test_sort``: who to probe next. Re-confirm currently healthy relays
  (fastest first), then try relays never tested, then retry failed relays,
  longest idle first.
- ``filter_relays``: what callers receive. Relays that succeeded recently
  enough and fast enough, with relays that failed since their last success
  pushed behind the rest, then by latency.

Blacklisted relays are left out of both. All functions are pure and take a
``Mapping`` of relay id to ``HealthRecord`` (see ``Registry.snapshot``).
"""

import time
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from relaypool.network.registry import HealthRecord

DEFAULT_MAX_AGE = 3600.0
DEFAULT_MAX_LATENCY = 30.0

_HEALTHY = 0
_UNTESTED = 1
_FAILING = 2


@dataclass(frozen=True)
class FilterOptions:
    """Thresholds for ``filter_relays``.

    Args:
        max_age: Maximum seconds since the last successful probe.
        max_latency: Exclusive ceiling on the recorded latency, in seconds.
        now: Fixed reference time; None means the current wall clock.
    """

    max_age: float = DEFAULT_MAX_AGE
    max_latency: float = DEFAULT_MAX_LATENCY
    now: Optional[float] = None

    def reference_time(self) -> float:
        return time.time() if self.now is None else self.now


def is_blacklisted(record: HealthRecord, now: float) -> bool:
    """Return True while the relay's ban (permanent or timed) is in force."""
    return record.blacklist is not None and record.blacklist > now


def is_healthy(record: HealthRecord) -> bool:
    """Return True when the most recent probe of the relay succeeded."""
    if record.last_successful is None or record.last_tested is None:
        return False
    return record.last_successful >= record.last_tested


def is_stale(record: HealthRecord) -> bool:
    """Return True when the relay has failed a probe since it last succeeded."""
    if record.last_successful is None or record.last_tested is None:
        return False
    return record.last_successful < record.last_tested


def _test_key(record: HealthRecord) -> Tuple[int, float]:
    if is_healthy(record):
        latency = record.latency if record.latency is not None else float("inf")
        return _HEALTHY, latency
    if record.last_tested is None:
        return _UNTESTED, 0.0
    return _FAILING, record.last_tested


def test_sort(
    records: Mapping[str, HealthRecord], now: Optional[float] = None
) -> List[str]:
    """Return non-blacklisted relay ids in the order they should be probed.

    Ties keep the snapshot's registration order.
    """
    reference = time.time() if now is None else now
    candidates = [
        relay for relay, record in records.items() if not is_blacklisted(record, reference)
    ]
    return sorted(candidates, key=lambda relay: _test_key(records[relay]))


# Not a pytest test, even when imported into a test module.
test_sort.__test__ = False  # type: ignore[attr-defined]


def filter_relays(
    records: Mapping[str, HealthRecord], options: Optional[FilterOptions] = None
) -> List[str]:
    """Return usable relay ids, best first.

    A relay is usable when it is not blacklisted, succeeded within
    ``options.max_age`` seconds and has a known latency below
    ``options.max_latency``.
    """
    opts = options or FilterOptions()
    now = opts.reference_time()

    results: List[str] = []
    for relay, record in records.items():
        if is_blacklisted(record, now):
            continue
        if record.last_successful is None:
            continue
        if now - record.last_successful > opts.max_age:
            continue
        if record.latency is None or record.latency >= opts.max_latency:
            continue
        results.append(relay)

    return sorted(
        results,
        key=lambda relay: (is_stale(records[relay]), records[relay].latency),
    )


__all__ = [
    "DEFAULT_MAX_AGE",
    "DEFAULT_MAX_LATENCY",
    "FilterOptions",
    "filter_relays",
    "is_blacklisted",
    "is_healthy",
    "is_stale",
    "test_sort",
]
