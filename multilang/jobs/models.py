"""
Metafield job records.

A job holds an ordered list of metafield operations for one tenant. Each
operation carries its own ``completed`` marker, so a retried job resumes
after the last applied operation instead of re-applying earlier ones.

Jobs are stored as JSON in the credential store and never carry tenant
tokens; the worker resolves the token when the job runs.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from multilang.credentials.models import KEY_PREFIX, now_ms

# Retention once a job reaches a terminal state
COMPLETED_JOB_TTL_SECONDS = 24 * 60 * 60
FAILED_JOB_TTL_SECONDS = 7 * 24 * 60 * 60

PENDING_JOBS_KEY = f"{KEY_PREFIX}:jobs:pending"


def job_key(job_id: str) -> str:
    return f"{KEY_PREFIX}:jobs:{job_id}"


def job_key_pattern() -> str:
    return f"{KEY_PREFIX}:jobs:*"


class JobState(str, Enum):
    """Job state values."""
    QUEUED = "queued"  # Waiting for the worker (first run or retry)
    ACTIVE = "active"  # Worker is applying operations
    COMPLETED = "completed"
    FAILED = "failed"  # Attempts exhausted


class JobKind(str, Enum):
    SINGLE = "single"
    BATCH = "batch"


class OperationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


JOB_NAMES = {
    JobKind.SINGLE: "process-metafield",
    JobKind.BATCH: "batch-metafield",
}


@dataclass
class JobOperation:
    action: str
    data: Dict[str, Any] = field(default_factory=dict)
    completed: bool = False
    result: Optional[Any] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobOperation":
        return cls(
            action=data.get("action", ""),
            data=data.get("data") or {},
            completed=bool(data.get("completed")),
            result=data.get("result"),
        )


@dataclass
class Job:
    """
    Queued metafield work for one tenant.

    ``attempts`` counts failed runs; the job is failed for good once it
    reaches ``max_attempts``.
    """

    tenant_id: str
    kind: str
    operations: List[JobOperation]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    state: str = JobState.QUEUED.value
    progress: int = 0
    attempts: int = 0
    max_attempts: int = 3
    result: Optional[Any] = None
    failed_reason: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    available_at: Optional[int] = None

    def __post_init__(self):
        if not self.name:
            self.name = JOB_NAMES.get(JobKind(self.kind), "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            kind=data.get("kind", JobKind.SINGLE.value),
            name=data.get("name", ""),
            operations=[JobOperation.from_dict(op) for op in data.get("operations") or []],
            state=data.get("state", JobState.QUEUED.value),
            progress=int(data.get("progress") or 0),
            attempts=int(data.get("attempts") or 0),
            max_attempts=int(data.get("max_attempts") or 3),
            result=data.get("result"),
            failed_reason=data.get("failed_reason"),
            created_at=int(data.get("created_at") or 0),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            available_at=data.get("available_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id}, tenant_id={self.tenant_id}, name={self.name}, "
            f"state={self.state}, attempts={self.attempts})>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.COMPLETED.value, JobState.FAILED.value)

    def retention_seconds(self) -> Optional[int]:
        if self.state == JobState.COMPLETED.value:
            return COMPLETED_JOB_TTL_SECONDS
        if self.state == JobState.FAILED.value:
            return FAILED_JOB_TTL_SECONDS
        return None

    def mark_active(self, now: Optional[int] = None) -> None:
        """Mark job as picked up by the worker."""
        self.state = JobState.ACTIVE.value
        self.started_at = now if now is not None else now_ms()
        self.available_at = None

    def mark_completed(self, now: Optional[int] = None) -> None:
        """Mark job as completed; result lists every operation outcome."""
        self.state = JobState.COMPLETED.value
        self.progress = 100
        self.finished_at = now if now is not None else now_ms()
        self.result = {
            "total": len(self.operations),
            "results": [
                {"action": op.action, "success": op.completed, "data": op.result}
                for op in self.operations
            ],
        }

    def mark_retrying(self, available_at: int) -> None:
        """Return job to the queue after a failed attempt."""
        self.state = JobState.QUEUED.value
        self.available_at = available_at

    def mark_interrupted(self) -> None:
        """Return an active job to the queue without charging an attempt."""
        self.state = JobState.QUEUED.value
        self.available_at = None

    def is_stale(self, now: int, stale_after_ms: int) -> bool:
        """Active for longer than ``stale_after_ms``: its worker is gone."""
        if self.state != JobState.ACTIVE.value:
            return False
        return self.started_at is None or now - self.started_at > stale_after_ms

    def mark_failed(self, reason: str, now: Optional[int] = None) -> None:
        """Mark job as failed for good."""
        self.state = JobState.FAILED.value
        self.failed_reason = reason
        self.finished_at = now if now is not None else now_ms()

    def can_retry(self) -> bool:
        """Check if job can be retried."""
        return self.attempts < self.max_attempts

    def status_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "progress": self.progress,
            "attempts": self.attempts,
            "result": self.result,
            "failed_reason": self.failed_reason,
        }
