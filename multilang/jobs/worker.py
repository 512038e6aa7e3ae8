"""
Consumer side of the metafield job queue.

Processes one job at a time:
1. Resolve the tenant's current access token from the credential store
2. Apply each operation in order, skipping those already completed by an
   earlier attempt, updating progress before each one
3. Persist the completion marker after each operation, then charge one
   unit of the tenant quota
4. Wait between operations (upstream rate limit), not after the last

Before each operation the tenant quota is checked; a tenant out of quota
fails the job for good with failed_reason QUOTA_EXCEEDED. Any other
failure ends the attempt: the job goes back to the queue with
exponential backoff until max_attempts, then it is failed with the
error as failed_reason.

A cancelled worker puts its active job back on the queue before
stopping. Jobs left active by a worker that died without that chance
are requeued when the next worker starts.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from multilang.credentials.models import TenantCredential, credential_key, now_ms
from multilang.credentials.store import CredentialStore
from multilang.integrations.haravan.api_client import HaravanAPIClient
from multilang.jobs.models import Job, JobOperation, OperationAction
from multilang.jobs.queue import JobDispatchQueue
from multilang.platform.errors import JobProcessingError, QuotaExceededError
from multilang.services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_BASE_MS = 2000
IDLE_POLL_SECONDS = 1.0
STALE_ACTIVE_JOB_MS = 10 * 60 * 1000


class MetafieldJobWorker:
    """Applies queued metafield operations against the Haravan API."""

    def __init__(
        self,
        queue: JobDispatchQueue,
        store: CredentialStore,
        api_client: HaravanAPIClient,
        ledger: Optional[QuotaLedger] = None,
        operation_delay_ms: int = 500,
        backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS,
        stale_after_ms: int = STALE_ACTIVE_JOB_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
    ):
        self.queue = queue
        self.store = store
        self.api_client = api_client
        self.ledger = ledger
        self.operation_delay_ms = operation_delay_ms
        self.backoff_base_ms = backoff_base_ms
        self.stale_after_ms = stale_after_ms
        self._sleep = sleep
        self._clock = clock

    async def process_next(self) -> Optional[Job]:
        """Process the next due job. Returns it, or None if nothing ran."""
        job = self.queue.pop_next()
        if job is None:
            return None
        return await self.process(job)

    async def process(self, job: Job) -> Job:
        job.mark_active(self._clock())
        self.queue.save(job)

        logger.info(
            "Processing job",
            extra={
                "job_id": job.id,
                "job_name": job.name,
                "tenant_id": job.tenant_id,
                "attempt": job.attempts + 1,
            },
        )

        try:
            token = self._resolve_token(job.tenant_id)
            total = len(job.operations)

            for index, operation in enumerate(job.operations):
                if operation.completed:
                    continue

                job.progress = int(index / total * 100)
                self.queue.save(job)

                if self.ledger is not None:
                    self.ledger.require_quota(job.tenant_id, 1)

                operation.result = await self._apply(token, operation)
                operation.completed = True
                self.queue.save(job)
                if self.ledger is not None:
                    self.ledger.use_quota(job.tenant_id, 1)

                if index < total - 1 and self.operation_delay_ms:
                    await self._sleep(self.operation_delay_ms / 1000)

        except asyncio.CancelledError:
            job.mark_interrupted()
            self.queue.requeue(job)
            logger.warning(
                "Job interrupted, returned to queue",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "progress": job.progress},
            )
            raise
        except Exception as e:
            self._handle_failure(job, e)
            return job

        job.mark_completed(self._clock())
        self.queue.save(job)
        logger.info(
            "Job completed",
            extra={"job_id": job.id, "tenant_id": job.tenant_id, "operation_count": len(job.operations)},
        )
        return job

    def _resolve_token(self, tenant_id: str) -> str:
        data = self.store.get(credential_key(tenant_id))
        credential = TenantCredential.from_dict(tenant_id, data) if data else None
        if credential is None or not credential.access_token:
            raise JobProcessingError(
                "No access token for tenant",
                details={"tenant_id": tenant_id},
            )
        return credential.access_token

    async def _apply(self, token: str, operation: JobOperation) -> Any:
        if operation.action == OperationAction.CREATE.value:
            return await self.api_client.create_metafield(token, operation.data)
        if operation.action == OperationAction.UPDATE.value:
            return await self.api_client.update_metafield(token, operation.data)
        if operation.action == OperationAction.DELETE.value:
            return await self.api_client.delete_metafield(token, operation.data.get("metafieldid"))
        raise JobProcessingError(f"Unknown action: {operation.action}")

    def _handle_failure(self, job: Job, error: Exception) -> None:
        job.attempts += 1

        if isinstance(error, QuotaExceededError):
            job.mark_failed(error.code, self._clock())
            self.queue.save(job)
            logger.warning(
                "Job failed, tenant quota exhausted",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "remaining": error.remaining},
            )
            return

        reason = error.message if isinstance(error, JobProcessingError) else str(error)
        if job.can_retry():
            delay_ms = self.backoff_base_ms * (2 ** (job.attempts - 1))
            job.mark_retrying(self._clock() + delay_ms)
            self.queue.requeue(job)
            logger.warning(
                "Job attempt failed, retrying",
                extra={
                    "job_id": job.id,
                    "tenant_id": job.tenant_id,
                    "attempt": job.attempts,
                    "max_attempts": job.max_attempts,
                    "retry_in_ms": delay_ms,
                    "error_type": type(error).__name__,
                    "error": reason,
                },
            )
            return

        job.mark_failed(reason, self._clock())
        self.queue.save(job)
        logger.error(
            "Job failed",
            extra={
                "job_id": job.id,
                "tenant_id": job.tenant_id,
                "attempts": job.attempts,
                "error_type": type(error).__name__,
                "error": reason,
            },
        )

    async def run_forever(self, idle_poll_seconds: float = IDLE_POLL_SECONDS) -> None:
        """Process jobs until cancelled."""
        logger.info("Metafield job worker started")
        try:
            self.queue.recover_stale_jobs(self.stale_after_ms)
        except Exception:
            logger.exception("Stale job recovery failed")

        while True:
            try:
                job = await self.process_next()
            except Exception:
                logger.exception("Metafield job worker step failed")
                job = None
            if job is None:
                await asyncio.sleep(idle_poll_seconds)
