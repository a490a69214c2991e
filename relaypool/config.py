"""Configuration utilities for the relay pool.

This module reads environment variables (optionally from an `.env` file) and
produces an application configuration object consumed by the CLI and by
callers embedding the pool.

Supported keys: `LOG_DIR`, `LOG_LEVEL`, `APP_NAME`, `RELAY_REFRESH_SECONDS`,
`RELAY_PROBE_TIMEOUT`, `RELAY_TEST_LIMIT`, `RELAY_SOURCE_CONCURRENCY`,
`RELAY_TEST_CONCURRENCY`, `RELAY_RETEST_AFTER`, `RELAY_SKIP_MAX_LATENCY`,
`RELAY_SKIP_MIN_RELAYS`, `RELAY_SOURCE_URLS` (comma-separated) and
`RELAY_TEST_URL`.

Usage example:

    from relaypool.config import load_config

    config = load_config()
    pool = RelayPool(config.pool)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, MutableMapping, Optional, Tuple, TypeVar

from relaypool.network.pool import DiscoveryPolicy, PoolConfig
from relaypool.network.tester import DEFAULT_TEST_URL

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

T = TypeVar("T")


def _load_env_file(path: Path) -> Dict[str, str]:
    """Parse a dotenv-style file into a dictionary."""
    if not path.exists():
        return {}

    data: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip("\"'")
    return data


def _merge_envs(dotenv_values: Mapping[str, str], env: MutableMapping[str, str]) -> Dict[str, str]:
    """Merge dotenv values with the current environment, preferring os.environ."""
    merged = dict(dotenv_values)
    merged.update(env)  # os.environ wins
    return merged


def load_environment(env_file: Optional[Path] = None) -> Dict[str, str]:
    """Return the dotenv file merged with ``os.environ``."""
    return _merge_envs(_load_env_file(env_file or DEFAULT_ENV_FILE), os.environ)


def _number(
    values: Mapping[str, str],
    key: str,
    default: T,
    cast: Callable[[str], T],
    allow_zero: bool = False,
) -> T:
    raw = values.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        result = cast(raw.strip())
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if result < 0 or (result == 0 and not allow_zero):  # type: ignore[operator]
        expected = "non-negative" if allow_zero else "positive"
        raise ValueError(f"{key} must be {expected}, got {raw!r}")
    return result


def _split_urls(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class AppConfig:
    """Application-level configuration values."""

    log_directory: Path
    log_level: str
    app_name: str = "relay-pool"
    pool: PoolConfig = field(default_factory=PoolConfig)
    source_urls: Tuple[str, ...] = ()
    test_url: str = DEFAULT_TEST_URL


def load_pool_config(values: Mapping[str, str]) -> PoolConfig:
    """Build a ``PoolConfig`` from merged environment values."""
    defaults = PoolConfig()
    policy = DiscoveryPolicy(
        max_latency=_number(
            values, "RELAY_SKIP_MAX_LATENCY", defaults.discovery_policy.max_latency, float
        ),
        min_relays=_number(
            values,
            "RELAY_SKIP_MIN_RELAYS",
            defaults.discovery_policy.min_relays,
            int,
            allow_zero=True,
        ),
    )
    return PoolConfig(
        refresh_interval=_number(values, "RELAY_REFRESH_SECONDS", defaults.refresh_interval, float),
        probe_timeout=_number(values, "RELAY_PROBE_TIMEOUT", defaults.probe_timeout, float),
        test_limit=_number(values, "RELAY_TEST_LIMIT", defaults.test_limit, int),
        source_concurrency=_number(
            values, "RELAY_SOURCE_CONCURRENCY", defaults.source_concurrency, int
        ),
        test_concurrency=_number(values, "RELAY_TEST_CONCURRENCY", defaults.test_concurrency, int),
        retest_after=_number(values, "RELAY_RETEST_AFTER", defaults.retest_after, float),
        discovery_policy=policy,
    )


def load_config(env_file: Optional[Path] = None) -> AppConfig:
    """Load configuration values using environment defaults."""
    merged = load_environment(env_file)

    log_directory = Path(merged.get("LOG_DIR", REPO_ROOT / "logs"))
    if not log_directory.is_absolute():
        log_directory = REPO_ROOT / log_directory

    log_level = merged.get("LOG_LEVEL", "INFO").upper()

    return AppConfig(
        log_directory=log_directory,
        log_level=log_level,
        app_name=merged.get("APP_NAME", "relay-pool"),
        pool=load_pool_config(merged),
        source_urls=_split_urls(merged.get("RELAY_SOURCE_URLS")),
        test_url=merged.get("RELAY_TEST_URL") or DEFAULT_TEST_URL,
    )


__all__ = ["AppConfig", "load_config", "load_environment", "load_pool_config", "REPO_ROOT"]
