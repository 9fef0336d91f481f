"""
Session lifecycle - open on connect, update in-band, close on disconnect.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..core.config import Settings
from ..core.errors import SessionNotFound
from ..core.resolver import resolve
from ..core.types import EffectiveConfig, InboundOverrides
from .store import Channel, Session, SessionStore

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Creates, updates and tears down sessions on behalf of the transports.

    Usage:
        manager = SessionManager(settings)
        session_id = await manager.open(overrides_from_headers(headers), channel)
        await manager.apply(session_id, overrides_from_headers(post_headers))
        config = await manager.effective_config(session_id)
        await manager.close(session_id)
    """

    def __init__(self, settings: Settings, store: Optional[SessionStore] = None):
        self.settings = settings
        self.store = store or SessionStore()

    async def open(self, seed: InboundOverrides, channel: Channel) -> str:
        """Create a session seeded with connection-time values."""
        session_id = await self.store.create(
            channel,
            credential=seed.credential,
            config=seed.config,
        )
        logger.info(
            f"Session opened: {session_id} "
            f"(credential={'set' if seed.credential else 'default'}, total: {self.store.session_count})"
        )
        return session_id

    async def apply(self, session_id: str, inbound: InboundOverrides) -> Session:
        """
        Store in-band values on the session.

        Only the values present in `inbound` are written; everything else
        keeps its previous value. Raises SessionNotFound for unknown ids.
        """
        session = None
        if inbound.credential:
            session = await self.store.update_credential(session_id, inbound.credential)
        if not inbound.config.is_empty():
            session = await self.store.update_config(session_id, inbound.config)
        if session is None:
            session = await self.get(session_id)
        return session

    async def get(self, session_id: str) -> Session:
        """Get a session snapshot or raise SessionNotFound."""
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def effective_config(
        self, session_id: str, request: Optional[InboundOverrides] = None
    ) -> EffectiveConfig:
        """Resolve the configuration for one invocation on this session."""
        session = await self.get(session_id)
        return resolve(
            self.settings,
            session_credential=session.credential,
            session_config=session.config,
            request=request,
        )

    async def close(self, session_id: str) -> None:
        """Destroy a session; closing twice is a no-op."""
        if await self.store.destroy(session_id):
            logger.info(f"Session closed: {session_id} (total: {self.store.session_count})")
