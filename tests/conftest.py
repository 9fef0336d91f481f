"""Shared test fixtures for the redash-bridge test suite.

FakeRedash is an httpx.MockTransport handler scripted with the responses
the Redash API would give; FakeClock replaces time.monotonic/asyncio.sleep
so poll loops run instantly and deterministically. ProtocolClient drives a
protocol session over in-memory streams.
"""

import asyncio
import json
from typing import Any

import anyio
import httpx
import pytest
from mcp import types
from mcp.shared.message import ServerMessageMetadata, SessionMessage

from redash_bridge.app import Bridge
from redash_bridge.core.config import Settings
from redash_bridge.runtime.engine_client import EngineClient
from redash_bridge.runtime.poller import JobPoller
from redash_bridge.transport.server import serve_session

BASE_URL = "https://redash.test"


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, start: float = 1000.0):
        self.value = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.value

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.value += seconds


class FakeRedash:
    """
    Scripted Redash API.

    Each response is either a JSON-able object (served with 200) or an
    httpx.Response. Poll responses are consumed in order; the last one
    repeats once the script runs out.
    """

    def __init__(self, submit: Any = None, polls: list[Any] | None = None, result: Any = None):
        self.submit_response = submit
        self.poll_responses = list(polls or [])
        self.result_response = result
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.startswith("/api/queries/"):
            return self._reply(self.submit_response)
        if request.method == "GET" and path.startswith("/api/jobs/"):
            scripted = self.poll_responses.pop(0) if len(self.poll_responses) > 1 else self.poll_responses[0]
            return self._reply(scripted)
        if request.method == "GET" and path.startswith("/api/query_results/"):
            return self._reply(self.result_response)
        return httpx.Response(404, text="not found")

    @staticmethod
    def _reply(scripted: Any) -> httpx.Response:
        if isinstance(scripted, httpx.Response):
            return scripted
        return httpx.Response(200, json=scripted)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(prefix)]

    @property
    def submit_calls(self) -> list[httpx.Request]:
        return self.calls("/api/queries/")

    @property
    def poll_calls(self) -> list[httpx.Request]:
        return self.calls("/api/jobs/")

    @property
    def fetch_calls(self) -> list[httpx.Request]:
        return self.calls("/api/query_results/")

    def submit_body(self, index: int = 0) -> dict:
        return json.loads(self.submit_calls[index].content)


def make_settings(**overrides) -> Settings:
    """Settings isolated from the process environment and any .env file."""
    values = dict(
        REDASH_URL=BASE_URL,
        REDASH_KEY=None,
        REDASH_QUERY_ID=None,
        QUERY_TIMEOUT_SECONDS=60,
        QUERY_POLL_MS=2000,
        QUERY_MAX_AGE_SECONDS=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_poller(fake: FakeRedash, clock: FakeClock) -> JobPoller:
    client = EngineClient(BASE_URL, transport=fake.transport())
    return JobPoller(client, clock=clock.now, sleep=clock.sleep)


def make_bridge(fake: FakeRedash, clock: FakeClock, **settings) -> Bridge:
    return Bridge(make_settings(**settings), poller=make_poller(fake, clock))




class RecordingChannel:
    """Channel that records how often it was closed."""

    def __init__(self):
        self.closed = False
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


# -----------------------------------------------------------------------
# Protocol helpers
# -----------------------------------------------------------------------

def rpc(request_id, method: str, params: dict | None = None) -> dict:
    body = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        body["params"] = params
    return body


def initialize(request_id=0) -> dict:
    return rpc(request_id, "initialize", {
        "protocolVersion": types.LATEST_PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": {"name": "tests", "version": "0"},
    })


INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}


def tool_call(request_id, org="acme.com", name="getData", arguments: dict | None = None) -> dict:
    return rpc(request_id, "tools/call", {"name": name, "arguments": {"org": org} if arguments is None else arguments})


def as_dict(message: SessionMessage) -> dict:
    return message.message.model_dump(by_alias=True, exclude_none=True, mode="json")


class ProtocolClient:
    """
    Drives one protocol session over in-memory streams.

    Usage:
        async with ProtocolClient(bridge.server, session_id) as client:
            reply = await client.request(tool_call(1))
    """

    def __init__(self, server, session_id: str):
        self.server = server
        self.session_id = session_id
        self._to_server, self._server_reads = anyio.create_memory_object_stream(32)
        self._server_writes, self._from_server = anyio.create_memory_object_stream(32)
        self.task: asyncio.Task | None = None
        self.initialized: dict = {}

    async def __aenter__(self) -> "ProtocolClient":
        self.task = asyncio.create_task(
            serve_session(self.server, self.session_id, self._server_reads, self._server_writes)
        )
        self.initialized = await self.request(initialize())
        await self.send(INITIALIZED)
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._to_server.aclose()
        await asyncio.wait_for(self.task, timeout=5)

    async def send(self, body: dict, http_request=None) -> None:
        metadata = ServerMessageMetadata(request_context=http_request) if http_request is not None else None
        message = types.JSONRPCMessage.model_validate(body)
        await self._to_server.send(SessionMessage(message, metadata=metadata))

    async def receive(self) -> dict:
        with anyio.fail_after(5):
            return as_dict(await self._from_server.receive())

    async def request(self, body: dict, http_request=None) -> dict:
        """Send a request and wait for the reply with the same id."""
        await self.send(body, http_request)
        while True:
            reply = await self.receive()
            if reply.get("id") == body["id"]:
                return reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()
