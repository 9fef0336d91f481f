"""
Transport module - client-facing adapters.

Provides:
- InvocationHandler: the getData operation, shared by every adapter
- build_server: protocol server exposing getData
- SseTransport: multi-session SSE + POST adapter (FastAPI)
- StdioTransport: single-session stdin/stdout adapter
"""

from __future__ import annotations

from .handler import GET_DATA_TOOL, InvocationHandler
from .server import SERVER_NAME, SERVER_VERSION, build_server, serve_session
from .sse import SseChannel, SseTransport
from .stdio import StdioChannel, StdioTransport

__all__ = [
    # Handler
    "InvocationHandler",
    "GET_DATA_TOOL",
    # Protocol
    "build_server",
    "serve_session",
    "SERVER_NAME",
    "SERVER_VERSION",
    # Adapters
    "SseTransport",
    "SseChannel",
    "StdioTransport",
    "StdioChannel",
]
