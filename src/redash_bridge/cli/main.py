#!/usr/bin/env python3
"""
Redash bridge CLI - Main entry point.

Usage:
    redash-bridge                      # stdio mode (default)
    redash-bridge --stdio              # stdio mode
    redash-bridge --http [--port N]    # HTTP/SSE mode (alias: --server)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from ..core.config import get_settings

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Log to stderr; stdout carries protocol messages in stdio mode."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def cmd_http(args: argparse.Namespace) -> int:
    """Run the multi-session HTTP/SSE server."""
    import uvicorn

    from ..app import create_app

    settings = get_settings()
    host = args.host or settings.HOST
    port = args.port or settings.PORT

    logger.info(f"Redash bridge running in HTTP/SSE mode on port {port}")
    logger.info(f"Health check: http://localhost:{port}/health")
    logger.info(f"SSE endpoint: http://localhost:{port}/sse")
    logger.info(f"Messages endpoint: http://localhost:{port}/messages?sessionId=<session-id>")
    logger.info("Timeout headers: X-Query-Timeout-Seconds, X-Query-Poll-Ms, X-Query-Max-Age-Seconds")
    logger.info("Query ID header: X-Query-Id or X-Redash-Query-Id")

    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.LOG_LEVEL.lower())
    return 0


def cmd_stdio(args: argparse.Namespace) -> int:
    """Run the single-session stdio server."""
    from ..app import run_stdio

    try:
        asyncio.run(run_stdio(get_settings()))
    except KeyboardInterrupt:
        return 130
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="redash-bridge",
        description="Tool bridge to Redash asynchronous queries",
    )
    mode = parser.add_argument_group("mode")
    mode.add_argument("--http", action="store_true", help="Serve HTTP/SSE")
    mode.add_argument("--server", action="store_true", help="Alias for --http")
    mode.add_argument("--stdio", action="store_true", help="Serve stdin/stdout (default)")
    parser.add_argument("--host", help="Bind address in HTTP mode (default: $HOST)")
    parser.add_argument("--port", type=int, help="Port in HTTP mode (default: $PORT)")
    return parser


def select_mode(args: argparse.Namespace) -> str:
    """HTTP only when asked for and --stdio is absent."""
    if (args.http or args.server) and not args.stdio:
        return "http"
    return "stdio"


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(get_settings().LOG_LEVEL)

    if select_mode(args) == "http":
        return cmd_http(args)
    return cmd_stdio(args)


if __name__ == "__main__":
    sys.exit(main())
