"""Command-line entrypoint: build a relay pool, wait for it, print the best relays."""

import argparse
import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from relaypool.config import REPO_ROOT, AppConfig, load_config
from relaypool.events import PROXY_TEST_SUCCESS, SOURCE_FETCH_ERROR
from relaypool.logging_utils import configure_logging, perf_span
from relaypool.network import ProbeRequest, RelayPool, RequestsTransport, TextListSource
from relaypool.network.pool import PoolConfig
from relaypool.network.tester import Transport

LOGGER = logging.getLogger(__name__)

DEFAULT_SOURCE_URL = (
    "https://raw.githubusercontent.com/monosans/proxy-list/refs/heads/main/proxies/http.txt"
)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Discover, test and rank HTTP relays.")
    parser.add_argument(
        "--source-url",
        action="append",
        default=None,
        help="Proxy list URL (ip:port per line). Repeatable. Defaults to RELAY_SOURCE_URLS "
        "or a public list.",
    )
    parser.add_argument(
        "--test-url",
        type=str,
        default=None,
        help="URL fetched through each relay to test it (default: RELAY_TEST_URL).",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=120.0,
        help="Seconds to wait for the first working relay (default: 120).",
    )
    parser.add_argument(
        "--max-latency",
        type=float,
        default=None,
        help="Only print relays faster than this many seconds (default: 30).",
    )
    parser.add_argument(
        "--max-age",
        type=float,
        default=None,
        help="Only print relays that worked within this many seconds (default: 3600).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of relays to print (default: 10).",
    )
    parser.add_argument(
        "--probe-timeout",
        type=float,
        default=None,
        help="Per-probe timeout in seconds (default: RELAY_PROBE_TIMEOUT or 20).",
    )
    return parser.parse_args(argv)


def _fallback_config() -> AppConfig:
    return AppConfig(log_directory=REPO_ROOT / "logs", log_level="INFO")


def build_pool(
    config: AppConfig,
    args: argparse.Namespace,
    transport: Optional[Transport] = None,
) -> RelayPool:
    """Assemble a pool from configuration and command-line overrides."""
    pool_config: PoolConfig = config.pool
    if args.probe_timeout is not None:
        pool_config = replace(pool_config, probe_timeout=args.probe_timeout)

    pool = RelayPool(pool_config, transport=transport)
    source_urls: List[str] = args.source_url or list(config.source_urls) or [DEFAULT_SOURCE_URL]
    for url in source_urls:
        pool.source(TextListSource(url))

    test_url = args.test_url or config.test_url
    pool.test(lambda: ProbeRequest(url=test_url))

    pool.on(
        SOURCE_FETCH_ERROR,
        lambda exc, name: LOGGER.warning("Source %s failed: %s", name, exc),
    )
    pool.on(
        PROXY_TEST_SUCCESS,
        lambda relay, record: LOGGER.info("Relay %s ok in %.3fs", relay, record.latency),
    )
    return pool


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config()
    except Exception as exc:  # noqa: BLE001 - log and exit gracefully with a file
        # Fall back to a default log location so failures are still captured per run.
        configure_logging(_fallback_config())
        LOGGER.error("Failed to load configuration: %s", exc)
        for handler in logging.getLogger().handlers:
            handler.flush()
        return 1

    configure_logging(config)

    with RequestsTransport() as transport:
        pool = build_pool(config, args, transport)
        with perf_span(
            "cli.wait_for_relays", tags={"sources": len(pool.sources)}, logger=LOGGER
        ):
            with pool:
                relays = pool.get(
                    max_age=args.max_age,
                    max_latency=args.max_latency,
                    timeout=args.wait,
                )

    if not relays:
        LOGGER.warning("No working relays found within %.1fs", args.wait)
        return 2

    for relay in relays[: max(1, args.limit)]:
        print(relay)
    return 0


__all__ = ["build_pool", "main", "parse_args"]
