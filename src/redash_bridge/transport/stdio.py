"""
Single-session stdio transport.

Newline-delimited JSON-RPC on stdin/stdout. The process lifetime is one
implicit session seeded only from the environment defaults.
"""

from __future__ import annotations

import logging
from typing import Optional

import anyio
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from ..core.types import InboundOverrides
from ..sessions.lifecycle import SessionManager
from .server import serve_session

logger = logging.getLogger(__name__)


class StdioChannel:
    """Session channel whose close cancels the running protocol loop."""

    def __init__(self, scope: anyio.CancelScope):
        self._scope = scope
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        self._scope.cancel()


class StdioTransport:
    """
    Serves one session over a pair of async text files.

    Usage:
        await StdioTransport(manager, server).serve()

    With no files given, the process stdin/stdout are used.
    """

    def __init__(
        self,
        sessions: SessionManager,
        server: Server,
        stdin: Optional[anyio.AsyncFile[str]] = None,
        stdout: Optional[anyio.AsyncFile[str]] = None,
    ):
        self.sessions = sessions
        self.server = server
        self.stdin = stdin
        self.stdout = stdout

    async def serve(self) -> None:
        """
        Read messages until EOF.

        Calls run concurrently, so a long poll never blocks reading the next
        message. EOF ends the session and cancels calls still in flight.
        """
        async with stdio_server(self.stdin, self.stdout) as (read_stream, write_stream):
            scope = anyio.CancelScope()
            session_id = await self.sessions.open(InboundOverrides(), StdioChannel(scope))
            try:
                with scope:
                    await serve_session(self.server, session_id, read_stream, write_stream)
            finally:
                with anyio.CancelScope(shield=True):
                    await self.sessions.close(session_id)
        logger.info("stdio transport closed")
