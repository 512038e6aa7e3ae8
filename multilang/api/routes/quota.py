"""Quota and trial information routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from multilang.api.dependencies import get_quota_ledger, get_subscription_tracker
from multilang.middleware.tenant_guard import TenantSession, require_tenant_session
from multilang.platform.errors import MissingParameterError
from multilang.services.quota_ledger import QuotaLedger
from multilang.services.subscription_tracker import SubscriptionStateTracker

router = APIRouter(tags=["quota"])


@router.get("/quota")
async def get_quota(
    session: TenantSession = Depends(require_tenant_session),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    return {"success": True, "data": ledger.get_quota(session.tenant_id).to_dict()}


@router.get("/token/trial")
async def get_trial_info(
    orgid: Optional[str] = Query(None),
    shop: Optional[str] = Query(None),
    tracker: SubscriptionStateTracker = Depends(get_subscription_tracker),
):
    tenant_id = orgid or shop
    if not tenant_id:
        raise MissingParameterError("orgid")
    return {"success": True, "data": tracker.get_trial_info(tenant_id).to_dict()}
