"""
Credential and configuration resolution.

Everything here is pure: no I/O, no shared state, and no failure modes.
A missing credential is only reported when the poller tries to use it.

Precedence, highest first:
    1. value supplied in-band with the current request
    2. value stored on the session
    3. process-wide default (Settings)
    4. DEFAULT_QUERY_ID, for the query id only
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Mapping, Optional

from .config import DEFAULT_QUERY_ID, Settings
from .types import ConfigOverrides, EffectiveConfig, InboundOverrides

logger = logging.getLogger(__name__)


CREDENTIAL_HEADERS = ("authorization",)
TIMEOUT_HEADERS = ("x-query-timeout-seconds", "x-timeout-seconds")
POLL_HEADERS = ("x-query-poll-ms", "x-poll-ms")
MAX_AGE_HEADERS = ("x-query-max-age-seconds", "x-max-age-seconds")
QUERY_ID_HEADERS = ("x-query-id", "x-redash-query-id")


def _scheme_value(raw: str) -> Optional[str]:
    parts = raw.split(" ")
    if len(parts) == 2 and parts[1]:
        return parts[1]
    return None


def _key_prefix(raw: str) -> Optional[str]:
    if raw.startswith("Key "):
        return raw[4:].strip() or None
    return None


def _bare_token(raw: str) -> Optional[str]:
    return raw


# Tried in order; the first matcher returning a value wins.
AUTHORIZATION_FORMS: tuple[Callable[[str], Optional[str]], ...] = (
    _scheme_value,
    _key_prefix,
    _bare_token,
)


def parse_authorization(raw: Optional[str]) -> Optional[str]:
    """
    Normalize an Authorization header value to a bare credential.

    Accepts "<scheme> <value>", "Key <value>" and "<value>".

    Examples:
        parse_authorization("Key abc")     -> "abc"
        parse_authorization("Bearer abc")  -> "abc"
        parse_authorization("abc")         -> "abc"
        parse_authorization("  ")          -> None
    """
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    for form in AUTHORIZATION_FORMS:
        credential = form(raw)
        if credential:
            return credential
    return None


def _first_header(headers: Mapping[str, str], names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _non_negative(value: float) -> bool:
    return math.isfinite(value) and value >= 0


def _parse_number(value: Optional[str], cast: Callable, accept: Callable[[float], bool], header: str):
    if value is None:
        return None
    try:
        number = cast(value)
    except ValueError:
        logger.warning(f"Ignoring unparseable {header} header value: {value!r}")
        return None
    if not accept(number):
        logger.warning(f"Ignoring out-of-range {header} header value: {value!r}")
        return None
    return number


def overrides_from_headers(headers: Mapping[str, str]) -> InboundOverrides:
    """
    Parse credential and tuning overrides from inbound headers.

    Header names are matched case-insensitively; for each field the first
    present alias wins. A number that does not parse or is out of range is
    ignored: timeout and poll interval must be finite and positive, max age
    finite and non-negative.
    """
    lowered = {key.lower(): value for key, value in headers.items()}

    config = ConfigOverrides(
        timeout_seconds=_parse_number(_first_header(lowered, TIMEOUT_HEADERS), float, _positive, "timeout"),
        poll_interval_ms=_parse_number(_first_header(lowered, POLL_HEADERS), int, _positive, "poll interval"),
        max_result_age_seconds=_parse_number(_first_header(lowered, MAX_AGE_HEADERS), int, _non_negative, "max age"),
        query_id=_first_header(lowered, QUERY_ID_HEADERS),
    )
    return InboundOverrides(
        credential=parse_authorization(_first_header(lowered, CREDENTIAL_HEADERS)),
        config=config,
    )


def _pick(*values):
    for value in values:
        if value is not None:
            return value
    return None


def resolve(
    settings: Settings,
    session_credential: Optional[str] = None,
    session_config: Optional[ConfigOverrides] = None,
    request: Optional[InboundOverrides] = None,
) -> EffectiveConfig:
    """
    Resolve the effective configuration for one invocation.

    Args:
        settings: Process-wide defaults
        session_credential: Credential stored on the session, if any
        session_config: Overrides stored on the session, if any
        request: Values supplied in-band with the current request, if any

    Returns:
        EffectiveConfig built fresh for this invocation
    """
    session_config = session_config or ConfigOverrides()
    request = request or InboundOverrides()
    in_band = request.config

    return EffectiveConfig(
        credential=_pick(request.credential, session_credential, settings.REDASH_KEY),
        timeout_seconds=_pick(
            in_band.timeout_seconds, session_config.timeout_seconds, settings.QUERY_TIMEOUT_SECONDS
        ),
        poll_interval_ms=_pick(
            in_band.poll_interval_ms, session_config.poll_interval_ms, settings.QUERY_POLL_MS
        ),
        max_result_age_seconds=_pick(
            in_band.max_result_age_seconds,
            session_config.max_result_age_seconds,
            settings.QUERY_MAX_AGE_SECONDS,
        ),
        query_id=_pick(
            in_band.query_id, session_config.query_id, settings.REDASH_QUERY_ID, DEFAULT_QUERY_ID
        ),
    )
