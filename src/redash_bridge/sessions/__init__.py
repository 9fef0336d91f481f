"""
Sessions module - per-connection state.

Provides:
- SessionStore: concurrency-safe registry keyed by session id
- SessionManager: open / update / close on behalf of the transports
"""

from __future__ import annotations

from .lifecycle import SessionManager
from .store import Channel, Session, SessionStore

__all__ = [
    "Channel",
    "Session",
    "SessionStore",
    "SessionManager",
]
