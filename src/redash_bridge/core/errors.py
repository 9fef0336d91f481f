"""
Custom exceptions for the Redash bridge.
"""

from __future__ import annotations

import json
from typing import Any, Optional


class BridgeError(Exception):
    """Base exception for all bridge errors."""
    pass


class MissingCredential(BridgeError):
    """Raised when no credential resolved from any layer."""

    def __init__(self):
        super().__init__("REDASH_KEY env var or Authorization header is required")


class UpstreamHTTPError(BridgeError):
    """Raised when a submit/poll/fetch call returns a non-success status."""

    def __init__(self, operation: str, status_code: int, body: str):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to {operation}: {status_code} - {body}")


class UnexpectedUpstreamShape(BridgeError):
    """Raised when the submit response has neither a result nor a job."""

    def __init__(self, payload: Any):
        self.payload = payload
        super().__init__(
            f"Unexpected Redash response (no query_result or job): {json.dumps(payload, default=str)}"
        )


class MissingResultReference(BridgeError):
    """Raised when a job reports done without a query_result_id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} completed but no query_result_id in response")


class UpstreamJobFailed(BridgeError):
    """Raised when the engine reports the job as failed."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        self.message = message
        super().__init__(f"Redash job {job_id} failed: {message}")


class PollTimeout(BridgeError):
    """Raised when the deadline passes without a terminal job status."""

    def __init__(self, job_id: Optional[str], elapsed: float):
        self.job_id = job_id
        self.elapsed = elapsed
        target = f"Redash job {job_id}" if job_id else "Redash results"
        super().__init__(f"Timed out waiting for {target} after {round(elapsed)}s")


class SessionNotFound(BridgeError):
    """Raised when a session id is not registered."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No transport/server found for sessionId {session_id}")


class InvalidArguments(BridgeError):
    """Raised when tool arguments fail validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid arguments: {'; '.join(errors)}")
