"""In-memory health registry for candidate relays.

The registry is the single source of truth for what the pool knows about each
relay. Every mutation takes the registry lock for exactly one step, so probe
workers finishing concurrently never tear a record. Readers take a
``snapshot`` and rank that frozen copy.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Optional, Union

LOGGER = logging.getLogger(__name__)

FOREVER = float("inf")


@dataclass
class HealthRecord:
    """Health state of a single relay.

    Attributes:
        created: Epoch seconds when the relay was first registered.
        last_tested: Epoch seconds of the most recent probe, or None.
        last_successful: Epoch seconds of the most recent successful probe, or None.
        latency: Seconds taken by the most recent successful probe, or None.
            A later failed probe leaves it in place.
        blacklist: None when unset, ``FOREVER`` for a permanent ban, otherwise
            the epoch seconds until which the relay is banned.
    """

    created: float
    last_tested: Optional[float] = None
    last_successful: Optional[float] = None
    latency: Optional[float] = None
    blacklist: Optional[float] = None


class Registry:
    """Thread-safe map of relay identifier to ``HealthRecord``."""

    def __init__(self, records: Optional[Dict[str, HealthRecord]] = None) -> None:
        self._records: Dict[str, HealthRecord] = dict(records or {})
        self._lock = threading.Lock()

    def __contains__(self, relay: object) -> bool:
        with self._lock:
            return relay in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def get(self, relay: str) -> Optional[HealthRecord]:
        """Return a copy of the record for ``relay``, or None if unknown."""
        with self._lock:
            record = self._records.get(relay)
            return replace(record) if record is not None else None

    def snapshot(self) -> Dict[str, HealthRecord]:
        """Return a frozen copy of every record, preserving registration order."""
        with self._lock:
            return {relay: replace(record) for relay, record in self._records.items()}

    def add(self, relay: str, now: Optional[float] = None) -> "Registry":
        """Register ``relay`` if it is new; re-adding a known relay is a no-op."""
        with self._lock:
            if relay in self._records:
                LOGGER.debug("Relay %s already registered", relay)
                return self
            self._records[relay] = HealthRecord(created=time.time() if now is None else now)
        return self

    def update(
        self,
        relay: str,
        success: bool,
        latency: Optional[float] = None,
        now: Optional[float] = None,
    ) -> None:
        """Record the outcome of a probe (or caller feedback) for ``relay``.

        Unknown relays are ignored.
        """
        stamp = time.time() if now is None else now
        with self._lock:
            record = self._records.get(relay)
            if record is None:
                LOGGER.debug("Ignoring update for unknown relay %s", relay)
                return
            record.last_tested = stamp
            if success:
                record.last_successful = record.last_tested
                if latency is not None:
                    record.latency = latency

    def blacklist(
        self,
        relay: str,
        duration: Union[bool, float],
        now: Optional[float] = None,
    ) -> None:
        """Ban ``relay`` permanently (``True`` or ``FOREVER``) or for ``duration`` seconds.

        A new ban replaces any earlier one. Unknown relays, ``False`` and
        non-positive durations are ignored.
        """
        if duration is True:
            until = FOREVER
        elif duration is False or duration <= 0:
            LOGGER.debug("Ignoring blacklist of %s with duration %r", relay, duration)
            return
        elif duration == FOREVER:
            until = FOREVER
        else:
            until = (time.time() if now is None else now) + duration

        with self._lock:
            record = self._records.get(relay)
            if record is None:
                LOGGER.debug("Ignoring blacklist for unknown relay %s", relay)
                return
            record.blacklist = until
        if until == FOREVER:
            LOGGER.info("Blacklisted relay %s permanently", relay)
        else:
            LOGGER.info("Blacklisted relay %s for %.1fs", relay, duration)

    def trim(self, allow_list: Iterable[str]) -> int:
        """Delete every relay not in ``allow_list``. Returns the number removed."""
        keep = set(allow_list)
        with self._lock:
            total = len(self._records)
            doomed = [relay for relay in self._records if relay not in keep]
            for relay in doomed:
                del self._records[relay]
            remaining = len(self._records)
        LOGGER.info("Trimmed relays, kept %d / %d", remaining, total)
        return len(doomed)


__all__ = ["FOREVER", "HealthRecord", "Registry"]
