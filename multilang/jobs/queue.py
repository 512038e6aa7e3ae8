"""
Producer side of the metafield job queue.

Job records live at haravan:multilanguage:jobs:{id}; ids waiting for the
worker are kept in the haravan:multilanguage:jobs:pending list. No broker:
Redis is the only job state, read back by the status endpoint.

Usage:
    queue = JobDispatchQueue(store)
    job_id = queue.enqueue_single(tenant_id, "create", values)
    queue.get_job_status(job_id)
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from multilang.credentials.models import now_ms
from multilang.credentials.store import CredentialStore
from multilang.jobs.models import (
    PENDING_JOBS_KEY,
    Job,
    JobKind,
    JobOperation,
    OperationAction,
    job_key,
    job_key_pattern,
)
from multilang.platform.errors import ValidationError

logger = logging.getLogger(__name__)

VALID_ACTIONS = frozenset(action.value for action in OperationAction)


def _validate_action(action: Optional[str]) -> str:
    if action not in VALID_ACTIONS:
        raise ValidationError(
            "Invalid action. Must be create, update or delete",
            details={"action": action},
        )
    return action


class JobDispatchQueue:
    """Creates, stores and hands out metafield jobs."""

    def __init__(
        self,
        store: CredentialStore,
        max_attempts: int = 3,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self._clock = clock

    def enqueue_single(self, tenant_id: str, action: str, payload: Dict[str, Any]) -> str:
        """
        Queue one metafield mutation.

        Raises:
            ValidationError: If action is not create/update/delete
        """
        operation = JobOperation(action=_validate_action(action), data=payload or {})
        job = Job(
            tenant_id=tenant_id,
            kind=JobKind.SINGLE.value,
            operations=[operation],
            max_attempts=self.max_attempts,
            created_at=self._clock(),
        )
        return self._enqueue(job)

    def enqueue_batch(self, tenant_id: str, operations: List[Dict[str, Any]]) -> str:
        """
        Queue several mutations applied in order.

        Raises:
            ValidationError: If operations is empty or any action is invalid
        """
        if not operations:
            raise ValidationError("Operations array is required")

        job = Job(
            tenant_id=tenant_id,
            kind=JobKind.BATCH.value,
            operations=[
                JobOperation(action=_validate_action(op.get("action")), data=op.get("data") or {})
                for op in operations
            ],
            max_attempts=self.max_attempts,
            created_at=self._clock(),
        )
        return self._enqueue(job)

    def _enqueue(self, job: Job) -> str:
        self.save(job)
        self.store.push(PENDING_JOBS_KEY, job.id)
        logger.info(
            "Job queued",
            extra={
                "job_id": job.id,
                "job_name": job.name,
                "tenant_id": job.tenant_id,
                "operation_count": len(job.operations),
            },
        )
        return job.id

    def get_job_status(self, job_id: str, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """Job status, or ``not_found`` for unknown ids and other tenants' jobs."""
        job = self.load(job_id)
        if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
            return {"state": "not_found"}
        return job.status_dict()

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def load(self, job_id: str) -> Optional[Job]:
        data = self.store.get(job_key(job_id))
        if not data:
            return None
        return Job.from_dict(data)

    def save(self, job: Job) -> None:
        self.store.set(job_key(job.id), job.to_dict(), ttl_seconds=job.retention_seconds())

    def requeue(self, job: Job) -> None:
        self.save(job)
        self.store.push(PENDING_JOBS_KEY, job.id)

    def pop_next(self) -> Optional[Job]:
        """
        Next runnable job, or None when nothing is due.

        Walks the pending list at most once. Jobs still in retry backoff go
        back to the end of the list; ids whose record has expired or was
        already finished are dropped.
        """
        for _ in range(self.store.length(PENDING_JOBS_KEY)):
            job_id = self.store.pop(PENDING_JOBS_KEY)
            if job_id is None:
                return None

            job = self.load(job_id)
            if job is None or job.is_terminal:
                logger.info("Dropping stale job id", extra={"job_id": job_id})
                continue

            if job.available_at and job.available_at > self._clock():
                self.store.push(PENDING_JOBS_KEY, job.id)
                continue

            return job
        return None

    def recover_stale_jobs(self, stale_after_ms: int) -> List[str]:
        """
        Requeue jobs left ``active`` by a worker that died mid-run.

        Completed operation markers are kept, so recovered jobs resume
        where they stopped. Returns the requeued job ids.
        """
        now = self._clock()
        recovered = []
        for key in self.store.scan_keys(job_key_pattern()):
            if key == PENDING_JOBS_KEY:
                continue
            data = self.store.get(key)
            if not data:
                continue
            job = Job.from_dict(data)
            if not job.is_stale(now, stale_after_ms):
                continue
            job.mark_interrupted()
            self.requeue(job)
            recovered.append(job.id)

        if recovered:
            logger.warning(
                "Requeued stale active jobs",
                extra={"job_count": len(recovered), "job_ids": recovered},
            )
        return recovered
