"""
Runtime module - upstream engine calls and the job-polling state machine.
"""

from __future__ import annotations

from .engine_client import EngineClient
from .poller import Deadline, Job, JobPoller, JobStatus, extract_job_id

__all__ = [
    "EngineClient",
    "JobPoller",
    "Job",
    "JobStatus",
    "Deadline",
    "extract_job_id",
]
