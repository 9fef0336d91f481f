"""
Invocation handler for the getData tool.

Shared by every transport adapter. It only sees a session id, the tool
arguments and any in-band overrides; it never knows which adapter called it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from mcp import types
from pydantic import ValidationError

from ..core.errors import BridgeError, InvalidArguments
from ..core.types import GetDataArguments, InboundOverrides
from ..runtime.poller import JobPoller
from ..sessions.lifecycle import SessionManager

logger = logging.getLogger(__name__)


GET_DATA_TOOL = types.Tool(
    name="getData",
    title="Fetch query data",
    description="Fetches customer postman usage data for the requested organization domain.",
    inputSchema=GetDataArguments.model_json_schema(),
)


class InvocationHandler:
    """
    Runs getData for a session.

    Usage:
        handler = InvocationHandler(manager, poller)
        payload = await handler.get_data(session_id, {"org": "acme.com"})
    """

    def __init__(self, sessions: SessionManager, poller: JobPoller):
        self.sessions = sessions
        self.poller = poller
        self._in_flight: set[asyncio.Task] = set()

    @property
    def tools(self) -> list[types.Tool]:
        return [GET_DATA_TOOL]

    async def get_data(
        self,
        session_id: str,
        arguments: Any,
        request: Optional[InboundOverrides] = None,
    ) -> Any:
        """
        Fetch data for an organization.

        Args:
            session_id: Session the call belongs to
            arguments: Raw tool arguments ({"org": str})
            request: Overrides supplied with this call, if any

        Returns:
            Upstream JSON payload, unmodified

        Raises:
            InvalidArguments: org missing or blank
            SessionNotFound: session is not live
            BridgeError: any poller failure
        """
        try:
            args = GetDataArguments.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidArguments(
                [f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()]
            ) from e

        config = await self.sessions.effective_config(session_id, request)
        started = time.monotonic()
        logger.info(f"getData started: session={session_id} org={args.org} query={config.query_id}")

        try:
            payload = await self.poller.execute(
                query_id=config.query_id,
                parameters={"org": args.org},
                credential=config.credential,
                timeout_seconds=config.timeout_seconds,
                poll_interval_ms=config.poll_interval_ms,
                max_result_age_seconds=config.max_result_age_seconds,
            )
        except BridgeError as e:
            logger.warning(f"getData failed: session={session_id} org={args.org}: {e}")
            raise

        logger.info(
            f"getData finished: session={session_id} org={args.org} "
            f"in {time.monotonic() - started:.2f}s"
        )
        return payload

    async def get_data_detached(
        self,
        session_id: str,
        arguments: Any,
        request: Optional[InboundOverrides] = None,
    ) -> Any:
        """
        Run get_data in a task of its own and wait for it.

        Cancelling the caller does not stop the call: a session whose
        transport closed mid-poll lets the poll finish or time out, and the
        outcome is dropped.
        """
        task = asyncio.ensure_future(self.get_data(session_id, arguments, request))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def drain(self, cancel: bool = False) -> None:
        """Wait for calls still running after their callers went away."""
        if not self._in_flight:
            return
        logger.info(f"{'Cancelling' if cancel else 'Waiting for'} {len(self._in_flight)} call(s) in flight")
        tasks = list(self._in_flight)
        if cancel:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
