"""
Protocol server for the getData tool.

The MCP low-level Server owns the wire protocol: handshake, capability
negotiation, request validation and error framing. This module only
registers the tool and routes calls to the InvocationHandler.

Transports run one Server.run() per client session through serve_session(),
which binds the bridge session id for every handler spawned by that run.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from typing import Any

from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.message import SessionMessage

from ..core.resolver import overrides_from_headers
from .handler import GET_DATA_TOOL, InvocationHandler

logger = logging.getLogger(__name__)


SERVER_NAME = "redash-bridge"
SERVER_VERSION = "1.0.0"

current_session: ContextVar[str] = ContextVar("redash_bridge_session")


def build_server(handler: InvocationHandler) -> Server:
    """
    Create the protocol server exposing getData.

    Tool failures are raised from the call handler; the SDK turns them into
    an isError result carrying the exception text.
    """
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return handler.tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        if name != GET_DATA_TOOL.name:
            raise ValueError(f"Unknown tool: {name}")

        # SSE posts carry their HTTP request; stdio calls have none
        http_request = server.request_context.request
        request = overrides_from_headers(http_request.headers) if http_request is not None else None

        payload = await handler.get_data_detached(current_session.get(), arguments, request)
        return [types.TextContent(type="text", text=json.dumps(payload, indent=2))]

    return server


async def serve_session(
    server: Server,
    session_id: str,
    read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
    write_stream: MemoryObjectSendStream[SessionMessage],
) -> None:
    """Run the protocol loop for one session until its inbound stream ends."""
    token = current_session.set(session_id)
    try:
        await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        current_session.reset(token)
        logger.debug(f"Protocol session ended: {session_id}")
