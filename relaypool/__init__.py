"""Live pool of health-checked, latency-ranked HTTP relays."""

from relaypool.network import FOREVER, PoolConfig, RelayPool, TextListSource

__version__ = "0.1.0"

__all__ = ["FOREVER", "PoolConfig", "RelayPool", "TextListSource", "__version__"]
