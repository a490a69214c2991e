"""Relay discovery: pluggable sources and the bounded-concurrency aggregator.

A discovery source is anything with a ``name`` and a ``fetch()`` method that
returns relay identifiers (proxy URLs) or raises. Plain zero-argument
callables are wrapped in ``FunctionSource``. ``TextListSource`` covers the
common case of a public list with one ``ip:port`` per line.
"""

import logging
import random
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Set, Tuple, Union

import requests

from relaypool.events import SOURCE_FETCH, SOURCE_FETCH_ERROR, EventEmitter
from relaypool.logging_utils import perf_span
from relaypool.network.registry import Registry

LOGGER = logging.getLogger(__name__)


class DiscoverySource(Protocol):
    """Capability implemented by every relay source."""

    name: str

    def fetch(self) -> List[str]:
        ...


class FunctionSource:
    """Adapt a zero-argument callable returning relay ids into a source."""

    def __init__(self, fn: Callable[[], Sequence[str]], name: Optional[str] = None) -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__name__", None) or repr(fn)

    def fetch(self) -> List[str]:
        return list(self._fn())

    def __repr__(self) -> str:
        return f"FunctionSource({self.name!r})"


SourceLike = Union[DiscoverySource, Callable[[], Sequence[str]]]


def as_source(candidate: SourceLike) -> DiscoverySource:
    """Return ``candidate`` as a ``DiscoverySource``, wrapping plain callables."""
    if hasattr(candidate, "fetch"):
        return candidate  # type: ignore[return-value]
    if callable(candidate):
        return FunctionSource(candidate)
    raise TypeError(f"Not a discovery source: {candidate!r}")


@dataclass(frozen=True)
class ProxyAddress:
    """A ``host:port`` pair parsed from a proxy list."""

    host: str
    port: int

    def as_url(self, scheme: str = "http") -> str:
        return f"{scheme}://{self.host}:{self.port}"


def parse_proxy_line(line: str) -> Optional[ProxyAddress]:
    """Parse a single ``ip:port`` line. Returns None for invalid lines."""
    raw_line = (line or "").strip()
    if not raw_line or ":" not in raw_line:
        return None
    host, port_text = raw_line.split(":", 1)
    host = host.strip()
    try:
        port = int(port_text.strip())
    except ValueError:
        return None
    if not host or port <= 0 or port > 65535:
        return None
    return ProxyAddress(host=host, port=port)


def fetch_proxy_list(
    source_url: str,
    *,
    timeout_seconds: float = 8.0,
    limit: Optional[int] = 300,
    session: Optional[requests.Session] = None,
) -> List[ProxyAddress]:
    """Fetch and parse a public proxy list.

    Args:
        source_url: URL returning a text list of ``ip:port`` per line.
        timeout_seconds: Request timeout in seconds.
        limit: Optional cap on the number of proxies kept (after shuffle/dedupe).
        session: Optional Requests session; a one-off request is made otherwise.

    Returns:
        A deduplicated list of ``ProxyAddress`` values.
    """
    getter = session.get if session is not None else requests.get
    resp = getter(source_url, timeout=timeout_seconds)
    resp.raise_for_status()

    addresses: List[ProxyAddress] = []
    seen: Set[Tuple[str, int]] = set()
    for text_line in resp.text.splitlines():
        address = parse_proxy_line(text_line)
        if not address:
            continue
        key = (address.host, address.port)
        if key in seen:
            continue
        seen.add(key)
        addresses.append(address)

    random.shuffle(addresses)
    if limit and limit > 0:
        addresses = addresses[:limit]

    LOGGER.info(
        "Fetched %d proxies from %s (limit=%s)",
        len(addresses),
        source_url,
        str(limit),
    )
    return addresses


class TextListSource:
    """Discovery source backed by a plain-text ``ip:port`` list URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 8.0,
        limit: Optional[int] = 300,
        scheme: str = "http",
        name: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.name = name or url
        self._timeout = timeout_seconds
        self._limit = limit
        self._scheme = scheme
        self._session = session

    def fetch(self) -> List[str]:
        addresses = fetch_proxy_list(
            self.url,
            timeout_seconds=self._timeout,
            limit=self._limit,
            session=self._session,
        )
        return [address.as_url(self._scheme) for address in addresses]

    def __repr__(self) -> str:
        return f"TextListSource({self.url!r})"


class SourceAggregator:
    """Run discovery sources with bounded concurrency and merge their relays."""

    def __init__(self, registry: Registry, emitter: EventEmitter, concurrency: int = 10) -> None:
        self._registry = registry
        self._emitter = emitter
        self._concurrency = max(1, int(concurrency))

    @staticmethod
    def _fetch_one(source: DiscoverySource) -> List[str]:
        LOGGER.debug("Requesting source %s ..", source.name)
        return list(source.fetch())

    def run(self, sources: Sequence[DiscoverySource]) -> int:
        """Fetch every source and register what they yield.

        A failing source is reported through ``SOURCE_FETCH_ERROR`` and does
        not stop the others. Returns the number of relay ids yielded overall.
        """
        if not sources:
            LOGGER.info("No discovery sources registered")
            return 0

        yielded = 0
        with perf_span(
            "sources.refresh",
            tags={"sources": len(sources)},
            logger=LOGGER,
        ):
            with ThreadPoolExecutor(max_workers=self._concurrency) as executor:
                futures = {executor.submit(self._fetch_one, source): source for source in sources}
                for fut in as_completed(futures):
                    source = futures[fut]
                    try:
                        relays = fut.result()
                    except Exception as exc:  # noqa: BLE001
                        LOGGER.warning("Source %s error: %s", source.name, exc)
                        self._emitter.emit(SOURCE_FETCH_ERROR, exc, source.name)
                        continue
                    for relay in relays:
                        self._registry.add(relay)
                    yielded += len(relays)
                    LOGGER.info("Source %s yielded %d relays", source.name, len(relays))
                    self._emitter.emit(SOURCE_FETCH, relays, source.name)
        return yielded


__all__ = [
    "DiscoverySource",
    "FunctionSource",
    "ProxyAddress",
    "SourceAggregator",
    "SourceLike",
    "TextListSource",
    "as_source",
    "fetch_proxy_list",
    "parse_proxy_line",
]
