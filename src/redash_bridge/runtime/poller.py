"""
Job poller - the submit -> poll -> fetch state machine.

One execute() call handles one invocation:

    submit ──► query_result present? ──yes──► return submit envelope
                 │ no
                 ▼
               job id present? ──no──► UnexpectedUpstreamShape
                 │ yes
                 ▼
    ┌────► poll job (until deadline) ──► done   ──► fetch result ──► return
    │            │                   ──► failed ──► UpstreamJobFailed
    └── sleep ◄──┘ queued / processing / unknown

A Job lives only inside execute(); nothing is cached between invocations.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional

from ..core.errors import (
    MissingCredential,
    MissingResultReference,
    PollTimeout,
    UnexpectedUpstreamShape,
    UpstreamJobFailed,
)
from .engine_client import EngineClient

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class JobStatus(IntEnum):
    QUEUED = 1
    PROCESSING = 2
    DONE = 3
    FAILED = 4


def _get(data: Any, key: str) -> Any:
    return data.get(key) if isinstance(data, dict) else None


@dataclass
class Job:
    """Snapshot of an upstream job, as reported by the last poll."""
    job_id: str
    status: Optional[int] = None
    result_id: Any = None
    error: Optional[str] = None

    @classmethod
    def from_poll(cls, job_id: str, payload: Any) -> Job:
        """
        Build a Job from a GET /api/jobs/{id} response.

        The result reference is read from job.result.query_result_id first,
        then job.query_result_id.
        """
        job = _get(payload, "job") or {}
        return cls(
            job_id=job_id,
            status=_get(job, "status"),
            result_id=_get(_get(job, "result"), "query_result_id") or _get(job, "query_result_id"),
            error=_get(job, "error"),
        )

    @property
    def is_done(self) -> bool:
        return self.status == JobStatus.DONE

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED


@dataclass(frozen=True)
class Deadline:
    """Wall-clock budget for one invocation, fixed at invocation start."""
    started_at: float
    expires_at: float
    clock: Clock = time.monotonic

    @classmethod
    def start(cls, budget_seconds: float, clock: Clock = time.monotonic) -> Deadline:
        if math.isnan(budget_seconds):
            raise ValueError("deadline budget must be a number, got NaN")
        now = clock()
        return cls(started_at=now, expires_at=now + budget_seconds, clock=clock)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self.clock())

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def expired(self) -> bool:
        return self.clock() >= self.expires_at


def extract_job_id(envelope: Any) -> Optional[str]:
    """Find the job id in a submit response (job.id, job.job_id or id)."""
    job = _get(envelope, "job")
    job_id = _get(job, "id") or _get(job, "job_id") or _get(envelope, "id")
    return str(job_id) if job_id else None


class JobPoller:
    """
    Drives one query invocation against Redash, bounded by a deadline.

    Usage:
        poller = JobPoller(EngineClient("https://redash.example.com"))
        payload = await poller.execute(
            query_id="35173",
            parameters={"org": "acme.com"},
            credential="...",
            timeout_seconds=60,
            poll_interval_ms=2000,
        )
    """

    def __init__(
        self,
        client: EngineClient,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self._clock = clock
        self._sleep = sleep

    async def execute(
        self,
        query_id: str,
        parameters: dict[str, Any],
        credential: Optional[str],
        timeout_seconds: float,
        poll_interval_ms: int,
        max_result_age_seconds: Optional[int] = None,
    ) -> Any:
        """
        Run the submit -> poll -> fetch cycle.

        Returns:
            The submit envelope on a cache hit, otherwise the fetched result
            envelope. Payloads are passed through unmodified.

        Raises:
            MissingCredential: credential is empty (no upstream call is made)
            UpstreamHTTPError: any upstream call failed
            UnexpectedUpstreamShape: submit returned neither result nor job
            MissingResultReference: job done without a result id
            UpstreamJobFailed: job reported failure
            PollTimeout: deadline passed before the cycle completed; every
                upstream call is cut off at the deadline, not only the sleeps
        """
        if not credential:
            raise MissingCredential()

        deadline = Deadline.start(timeout_seconds, self._clock)

        envelope = await self._within(
            deadline, None,
            self.client.submit, query_id, parameters, credential, max_age=max_result_age_seconds,
        )

        # Cached or instantly computed result, even with empty rows
        if _get(envelope, "query_result"):
            logger.debug(f"Query {query_id} answered from cache")
            return envelope

        job_id = extract_job_id(envelope)
        if not job_id:
            raise UnexpectedUpstreamShape(envelope)

        result_id = await self._wait_for_result(job_id, credential, poll_interval_ms / 1000, deadline)
        return await self._within(deadline, job_id, self.client.get_result, result_id, credential)

    async def _within(
        self,
        deadline: Deadline,
        job_id: Optional[str],
        call: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run one upstream call, cut off when the deadline passes."""
        remaining = deadline.remaining()
        if remaining <= 0:
            raise PollTimeout(job_id, deadline.elapsed())
        try:
            return await asyncio.wait_for(call(*args, **kwargs), remaining)
        except asyncio.TimeoutError:
            raise PollTimeout(job_id, deadline.elapsed()) from None

    async def _wait_for_result(
        self,
        job_id: str,
        credential: str,
        poll_interval: float,
        deadline: Deadline,
    ) -> Any:
        """Poll a job until it is done, failed, or the deadline passes."""
        while not deadline.expired():
            payload = await self._within(deadline, job_id, self.client.get_job, job_id, credential)
            job = Job.from_poll(job_id, payload)
            logger.debug(f"Job {job_id} status={job.status}")

            if job.is_done:
                if not job.result_id:
                    raise MissingResultReference(job_id)
                return job.result_id

            if job.is_failed:
                raise UpstreamJobFailed(job_id, job.error or "Unknown Redash job failure")

            # Never sleep past the deadline
            await self._sleep(min(poll_interval, deadline.remaining()))

        raise PollTimeout(job_id, deadline.elapsed())
