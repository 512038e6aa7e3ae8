"""
Metafield job queue.

Producer (JobDispatchQueue) and consumer (MetafieldJobWorker) share job
records stored in Redis.
"""

from multilang.jobs.models import Job, JobKind, JobOperation, JobState, OperationAction
from multilang.jobs.queue import JobDispatchQueue
from multilang.jobs.worker import MetafieldJobWorker

__all__ = [
    "Job",
    "JobKind",
    "JobOperation",
    "JobState",
    "OperationAction",
    "JobDispatchQueue",
    "MetafieldJobWorker",
]
