"""Session registry with per-session critical sections"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Protocol

from ..core.errors import SessionNotFound
from ..core.types import ConfigOverrides

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Live transport handle; closing it ends the client's protocol session."""

    @property
    def closed(self) -> bool: ...

    async def close(self) -> None: ...


@dataclass
class Session:
    """State of one logical client connection."""
    id: str
    channel: Channel
    credential: Optional[str] = None
    config: ConfigOverrides = field(default_factory=ConfigOverrides)
    created_at: float = field(default_factory=time.time)


class SessionStore:
    """
    In-process session registry.

    Each session id has its own asyncio.Lock, so updates to one session are
    serialized while different sessions never wait on each other. Callers
    only ever receive copies of the stored records.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _new_id(self) -> str:
        session_id = uuid.uuid4().hex
        while session_id in self._sessions:
            session_id = uuid.uuid4().hex
        return session_id

    async def create(
        self,
        channel: Channel,
        credential: Optional[str] = None,
        config: Optional[ConfigOverrides] = None,
    ) -> str:
        """Register a new session and return its id."""
        session_id = self._new_id()
        self._locks[session_id] = asyncio.Lock()
        self._sessions[session_id] = Session(
            id=session_id,
            channel=channel,
            credential=credential,
            config=config or ConfigOverrides(),
        )
        logger.debug(f"Session registered: {session_id} (total: {len(self._sessions)})")
        return session_id

    async def get(self, session_id: str) -> Optional[Session]:
        """Get a copy of a session, or None if it is not live."""
        session = self._sessions.get(session_id)
        return replace(session) if session else None

    async def update_credential(self, session_id: str, credential: str) -> Session:
        """Replace the stored credential; other fields are untouched."""
        async with self._lock(session_id):
            session = self._require(session_id)
            session.credential = credential
            return replace(session)

    async def update_config(self, session_id: str, config: ConfigOverrides) -> Session:
        """Overwrite only the config fields set on `config`."""
        async with self._lock(session_id):
            session = self._require(session_id)
            session.config = session.config.merged(config)
            return replace(session)

    async def destroy(self, session_id: str) -> bool:
        """
        Remove a session and close its channel.

        Returns:
            True if a session was removed, False if it was already gone
        """
        lock = self._locks.get(session_id)
        if lock is None:
            return False

        async with lock:
            session = self._sessions.pop(session_id, None)
            self._locks.pop(session_id, None)

        if session is None:
            return False

        await session.channel.close()
        logger.debug(f"Session removed: {session_id} (total: {len(self._sessions)})")
        return True

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            raise SessionNotFound(session_id)
        return lock

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def session_ids(self) -> list[str]:
        """Ids of all live sessions"""
        return list(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def session_count(self) -> int:
        """Get total number of live sessions"""
        return len(self._sessions)
