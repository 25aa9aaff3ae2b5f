"""Run the relay HTTP server.

Usage::

    python -m sensorrelay --port 10000 --db sensorrelay.db
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any

from aiohttp import web

from sensorrelay.app import create_app
from sensorrelay.config import RelayConfig
from sensorrelay.context import RelayContext
from sensorrelay.exceptions import RelayConfigError


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sensorrelay", description="Sensor -> LINE -> model relay server")
    parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: PORT or 10000)")
    parser.add_argument("--db", default=None, help="SQLite database path (default: RELAY_DATABASE_PATH)")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.db is not None:
        overrides["database_path"] = args.db

    try:
        config = RelayConfig.from_env(**overrides)
    except RelayConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    app = create_app(RelayContext(config))
    web.run_app(
        app,
        host=config.host,
        port=config.port,
        access_log=logging.getLogger("aiohttp.access") if config.access_log else None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
