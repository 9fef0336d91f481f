"""
Core module - errors, settings and configuration resolution.
"""

from __future__ import annotations

from .config import DEFAULT_QUERY_ID, Settings, get_settings
from .errors import (
    BridgeError,
    InvalidArguments,
    MissingCredential,
    MissingResultReference,
    PollTimeout,
    SessionNotFound,
    UnexpectedUpstreamShape,
    UpstreamHTTPError,
    UpstreamJobFailed,
)
from .resolver import overrides_from_headers, parse_authorization, resolve
from .types import ConfigOverrides, EffectiveConfig, GetDataArguments, InboundOverrides

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "DEFAULT_QUERY_ID",
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
    # Types
    "ConfigOverrides",
    "InboundOverrides",
    "EffectiveConfig",
    "GetDataArguments",
    # Resolver
    "parse_authorization",
    "overrides_from_headers",
    "resolve",
]
