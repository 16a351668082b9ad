"""Command line entry point for the TLS server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from core import server
from infrastructure.configuration import ALLOWED_TICKET_POLICIES, load_settings
from infrastructure.monitoring import configure_logging

LOGGER = logging.getLogger("tlsgate.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tlsgate",
        description="Serve HTTP/1.x and HTTP/2 over TLS with an ephemeral certificate",
    )
    parser.add_argument("--host", help="Address to bind (default ::1)")
    parser.add_argument("--port", type=int, help="Port to listen on (default 8001)")
    parser.add_argument(
        "--hostname",
        dest="hostnames",
        action="append",
        help="Certificate identity; repeat for several (default localhost and ::1)",
    )
    parser.add_argument(
        "--tickets",
        choices=sorted(ALLOWED_TICKET_POLICIES),
        help="Session ticket policy",
    )
    parser.add_argument(
        "--handshake-timeout", type=float, help="Seconds allowed for a TLS handshake"
    )
    parser.add_argument(
        "--idle-timeout", type=float, help="Seconds a connection may sit without data"
    )
    parser.add_argument(
        "--metrics-port", type=int, help="Expose Prometheus metrics on this port"
    )
    parser.add_argument("--log-level", help="Logging level name (default INFO)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the server; return the process exit status."""

    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(**vars(args))
        configure_logging(settings.log_level)
        asyncio.run(server.serve(settings))
    except KeyboardInterrupt:
        LOGGER.info("Server stopped.")
    except Exception as exc:
        print(f"FAILED: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
