"""
Metafield job queue routes.

Every route runs behind the tenant guard. Enqueue routes check the
tenant's remaining quota up front; the worker charges it per applied
operation.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from multilang.api.dependencies import get_job_queue, get_quota_ledger
from multilang.jobs.models import OperationAction
from multilang.jobs.queue import JobDispatchQueue
from multilang.middleware.tenant_guard import TenantSession, require_tenant_session
from multilang.platform.errors import MissingParameterError
from multilang.services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/metafields", tags=["metafields"])


class BatchOperation(BaseModel):
    action: str
    data: Dict[str, Any] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    operations: List[BatchOperation] = Field(default_factory=list)


def _queued(session: TenantSession, job_id: str, message: str) -> dict:
    logger.info("Metafield job queued", extra={"tenant_id": session.tenant_id, "job_id": job_id})
    return {
        "success": True,
        "data": {"jobId": job_id, "status": "queued", "message": message},
    }


@router.post("/queue/create")
async def queue_create_metafield(
    values: Dict[str, Any] = Body(...),
    session: TenantSession = Depends(require_tenant_session),
    queue: JobDispatchQueue = Depends(get_job_queue),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    ledger.require_quota(session.tenant_id, 1)
    job_id = queue.enqueue_single(session.tenant_id, OperationAction.CREATE.value, values)
    return _queued(session, job_id, "Metafield creation queued successfully")


@router.post("/queue/update")
async def queue_update_metafield(
    values: Dict[str, Any] = Body(...),
    session: TenantSession = Depends(require_tenant_session),
    queue: JobDispatchQueue = Depends(get_job_queue),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    ledger.require_quota(session.tenant_id, 1)
    job_id = queue.enqueue_single(session.tenant_id, OperationAction.UPDATE.value, values)
    return _queued(session, job_id, "Metafield update queued successfully")


@router.delete("/queue")
async def queue_delete_metafield(
    metafieldid: Optional[str] = Query(None),
    session: TenantSession = Depends(require_tenant_session),
    queue: JobDispatchQueue = Depends(get_job_queue),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    if not metafieldid:
        raise MissingParameterError("metafieldid")
    ledger.require_quota(session.tenant_id, 1)
    job_id = queue.enqueue_single(
        session.tenant_id,
        OperationAction.DELETE.value,
        {"metafieldid": metafieldid},
    )
    return _queued(session, job_id, "Metafield deletion queued successfully")


@router.post("/queue/batch")
async def queue_batch_metafields(
    request: BatchRequest,
    session: TenantSession = Depends(require_tenant_session),
    queue: JobDispatchQueue = Depends(get_job_queue),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    operations = [op.model_dump() for op in request.operations]
    if operations:
        ledger.require_quota(session.tenant_id, len(operations))
    job_id = queue.enqueue_batch(session.tenant_id, operations)
    return _queued(session, job_id, f"Batch operation with {len(operations)} items queued successfully")


@router.get("/queue/status/{job_id}")
async def get_job_status(
    job_id: str,
    session: TenantSession = Depends(require_tenant_session),
    queue: JobDispatchQueue = Depends(get_job_queue),
):
    return {"success": True, "data": queue.get_job_status(job_id, tenant_id=session.tenant_id)}
