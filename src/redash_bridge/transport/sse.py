"""
Multi-session HTTP transport (Server-Sent Events + POST).

Flow:
1. Client opens GET /sse; a session is created from the request headers
   and a protocol session is started for it
2. First event ("endpoint") tells the client where to POST messages
3. Client POSTs JSON-RPC messages to /messages?sessionId=<id>; headers on
   the POST update the session before the message is handed on
4. Protocol responses are pushed back as "message" events on the SSE stream
5. When the stream closes the session is destroyed
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import anyio
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.message import ServerMessageMetadata, SessionMessage
from pydantic import ValidationError

from ..core.errors import SessionNotFound
from ..core.resolver import overrides_from_headers
from ..sessions.lifecycle import SessionManager
from .server import serve_session

logger = logging.getLogger(__name__)

NO_SESSION = "No transport/server found for sessionId"


def format_event(event: str, data: str) -> str:
    """Encode one Server-Sent Event."""
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


class SseChannel:
    """
    Memory streams joining one SSE connection to its protocol session.

    inbound carries POSTed messages to the protocol session; outbound
    carries its responses to the event stream.
    """

    def __init__(self, buffer_size: int = 32):
        self._inbound_writer, self.inbound = anyio.create_memory_object_stream(buffer_size)
        self.outbound_writer, self.outbound = anyio.create_memory_object_stream(buffer_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: SessionMessage) -> None:
        """Hand one client message to the protocol session."""
        if self._closed:
            raise anyio.ClosedResourceError
        await self._inbound_writer.send(message)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._inbound_writer.aclose()
        await self.outbound_writer.aclose()


class SseTransport:
    """
    SSE transport serving many concurrent sessions from one process.

    Usage:
        transport = SseTransport(manager, server)
        app.include_router(transport.router)
    """

    def __init__(
        self,
        sessions: SessionManager,
        server: Server,
        *,
        sse_path: str = "/sse",
        messages_path: str = "/messages",
    ):
        self.sessions = sessions
        self.server = server
        self.sse_path = sse_path
        self.messages_path = messages_path
        self._tasks: set[asyncio.Task] = set()
        self.router = self._create_router()

    def _create_router(self) -> APIRouter:
        router = APIRouter()

        @router.get(self.sse_path)
        async def sse_endpoint(request: Request):
            return await self.connect(request)

        @router.post(self.messages_path)
        async def messages_endpoint(
            request: Request,
            session_id: Optional[str] = Query(None, alias="sessionId"),
        ):
            return await self.post_message(request, session_id)

        return router

    async def connect(self, request: Request) -> StreamingResponse:
        """Open a session, start its protocol loop and stream its messages."""
        seed = overrides_from_headers(request.headers)
        channel = SseChannel()
        session_id = await self.sessions.open(seed, channel)
        endpoint = f"{request.scope.get('root_path', '')}{self.messages_path}?sessionId={session_id}"
        self._spawn(self._run_session(session_id, channel))

        async def stream():
            try:
                yield format_event("endpoint", endpoint)
                async with channel.outbound:
                    async for session_message in channel.outbound:
                        yield format_event(
                            "message",
                            session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                        )
            finally:
                logger.info(f"SSE stream closed: {session_id}")
                # Runs while the response task is being cancelled
                with anyio.CancelScope(shield=True):
                    await self.sessions.close(session_id)

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def _run_session(self, session_id: str, channel: SseChannel) -> None:
        try:
            await serve_session(self.server, session_id, channel.inbound, channel.outbound_writer)
        except Exception as e:
            logger.error(f"Protocol session {session_id} failed: {e}", exc_info=True)
        finally:
            with anyio.CancelScope(shield=True):
                await self.sessions.close(session_id)

    async def post_message(self, request: Request, session_id: Optional[str]) -> JSONResponse:
        """
        Accept one JSON-RPC message for a session.

        Header overrides are stored on the session before the message is
        handed on, so they apply to this call and every later one. The
        request itself travels with the message, and the tool handler reads
        this call's overrides from it.
        """
        if not session_id:
            return _bad_request(NO_SESSION)

        inbound = overrides_from_headers(request.headers)
        try:
            session = await self.sessions.apply(session_id, inbound)
        except SessionNotFound:
            logger.warning(f"Message for unknown session: {session_id}")
            return _bad_request(NO_SESSION)

        try:
            message = types.JSONRPCMessage.model_validate_json(await request.body())
        except ValidationError as e:
            logger.warning(f"Unparseable message for session {session_id}: {e}")
            return _bad_request("Could not parse message")

        try:
            await session.channel.send(
                SessionMessage(message, metadata=ServerMessageMetadata(request_context=request))
            )
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.warning(f"Message for closed session: {session_id}")
            return _bad_request(NO_SESSION)

        return JSONResponse({"status": "accepted"}, status_code=202)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self):
        """Close every live session and stop their protocol loops."""
        for session_id in self.sessions.store.session_ids():
            await self.sessions.close(session_id)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("SSE transport shutdown complete")

    @property
    def active_sessions(self) -> int:
        return len(self._tasks)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)
