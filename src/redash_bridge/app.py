"""
Application factory for the Redash bridge.

Creates the component graph once per process:

    Settings -> EngineClient -> JobPoller
             -> SessionManager
             -> InvocationHandler -> protocol server -> transport adapter

and exposes it either as a FastAPI app (multi-session SSE) or as a stdio
loop (single session).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import anyio
import httpx
from fastapi import FastAPI

from .core.config import Settings, get_settings
from .runtime.engine_client import EngineClient
from .runtime.poller import JobPoller
from .sessions.lifecycle import SessionManager
from .transport.handler import InvocationHandler
from .transport.server import SERVER_NAME, SERVER_VERSION, build_server
from .transport.sse import SseTransport
from .transport.stdio import StdioTransport

logger = logging.getLogger(__name__)


class HealthcheckLogFilter(logging.Filter):
    """
    Drops uvicorn access lines for the bridge's /health endpoint.

    /sse and /messages lines are kept. uvicorn passes the request path as
    the third access-log argument; a query string does not change the match.
    """

    def __init__(self, path: str = "/health"):
        super().__init__()
        self.path = path

    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            return str(args[2]).split("?", 1)[0] != self.path
        return True


def _quiet_healthchecks(path: str = "/health") -> None:
    access_log = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, HealthcheckLogFilter) for f in access_log.filters):
        access_log.addFilter(HealthcheckLogFilter(path))


class Bridge:
    """
    Wires the bridge components together.

    Args:
        settings: Process-wide defaults
        http_transport: Optional httpx transport for the engine client
        poller: Optional pre-built poller (tests inject clock/sleep this way)
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        poller: Optional[JobPoller] = None,
    ):
        self.settings = settings
        if poller is None:
            poller = JobPoller(
                EngineClient(
                    settings.REDASH_URL,
                    timeout=settings.HTTP_TIMEOUT_SECONDS,
                    transport=http_transport,
                )
            )
        self.poller = poller
        self.client = poller.client
        self.sessions = SessionManager(settings)
        self.handler = InvocationHandler(self.sessions, self.poller)
        self.server = build_server(self.handler)

    async def close(self):
        await self.client.close()


def create_app(settings: Optional[Settings] = None, bridge: Optional[Bridge] = None) -> FastAPI:
    """
    Create the FastAPI app serving the multi-session SSE transport.

    Args:
        settings: Settings to use (default: loaded from the environment)
        bridge: Pre-built component graph (default: built from settings)

    Returns:
        Configured FastAPI application
    """
    bridge = bridge or Bridge(settings or get_settings())
    transport = SseTransport(bridge.sessions, bridge.server)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _quiet_healthchecks()
        logger.info(f"Redash bridge serving {bridge.settings.REDASH_URL} over SSE")

        yield

        await transport.shutdown()
        await bridge.handler.drain(cancel=True)
        await bridge.close()

    app = FastAPI(
        title="Redash Bridge",
        description="Tool bridge to Redash asynchronous queries",
        version=SERVER_VERSION,
        lifespan=lifespan,
    )
    app.state.bridge = bridge
    app.state.transport = transport

    app.include_router(transport.router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": SERVER_NAME}

    return app


async def run_stdio(
    settings: Optional[Settings] = None,
    *,
    bridge: Optional[Bridge] = None,
    stdin: Optional[anyio.AsyncFile[str]] = None,
    stdout: Optional[anyio.AsyncFile[str]] = None,
) -> None:
    """
    Serve a single session over stdin/stdout until EOF.

    Calls still polling at EOF run to completion or timeout before the
    process exits; their results have nowhere to go and are dropped.
    """
    bridge = bridge or Bridge(settings or get_settings())
    transport = StdioTransport(bridge.sessions, bridge.server, stdin=stdin, stdout=stdout)
    try:
        await transport.serve()
        await bridge.handler.drain()
    finally:
        await bridge.close()
