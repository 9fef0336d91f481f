"""
Redash bridge - tool protocol bridge to Redash asynchronous queries.

Each client connection gets its own session with its own credential and
tuning overrides; every getData call submits a query, polls the resulting
job under a deadline and returns the upstream payload verbatim.

Usage:
    from redash_bridge import Settings, create_app

    app = create_app(Settings(REDASH_KEY="..."))
"""

from __future__ import annotations

from .app import Bridge, create_app, run_stdio
from .core import (
    BridgeError,
    ConfigOverrides,
    DEFAULT_QUERY_ID,
    EffectiveConfig,
    InboundOverrides,
    InvalidArguments,
    MissingCredential,
    MissingResultReference,
    PollTimeout,
    SessionNotFound,
    Settings,
    UnexpectedUpstreamShape,
    UpstreamHTTPError,
    UpstreamJobFailed,
    get_settings,
    overrides_from_headers,
    parse_authorization,
    resolve,
)
from .runtime import Deadline, EngineClient, Job, JobPoller, JobStatus
from .sessions import Session, SessionManager, SessionStore
from .transport import (
    InvocationHandler,
    build_server,
    SseTransport,
    StdioTransport,
)

__version__ = "1.0.0"

__all__ = [
    # App
    "Bridge",
    "create_app",
    "run_stdio",
    # Config
    "Settings",
    "get_settings",
    "DEFAULT_QUERY_ID",
    "ConfigOverrides",
    "InboundOverrides",
    "EffectiveConfig",
    # Resolver
    "parse_authorization",
    "overrides_from_headers",
    "resolve",
    # Errors
    "BridgeError",
    "MissingCredential",
    "UpstreamHTTPError",
    "UnexpectedUpstreamShape",
    "MissingResultReference",
    "UpstreamJobFailed",
    "PollTimeout",
    "SessionNotFound",
    "InvalidArguments",
    # Runtime
    "EngineClient",
    "JobPoller",
    "Job",
    "JobStatus",
    "Deadline",
    # Sessions
    "Session",
    "SessionStore",
    "SessionManager",
    # Transport
    "InvocationHandler",
    "build_server",
    "SseTransport",
    "StdioTransport",
]
