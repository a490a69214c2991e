#!/usr/bin/env python3
"""Command-line entrypoint for discovering and ranking relays."""

from relaypool.cli import main

if __name__ == "__main__":  # pragma: no cover - script entrypoint
    raise SystemExit(main())
