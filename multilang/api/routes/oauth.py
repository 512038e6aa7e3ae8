"""
Haravan app install, login and webhook routes.

SECURITY:
- No tenant guard here: these are called by Haravan or by a tenant that
  has no credential yet
- The webhook handshake is checked against HRV_WEBHOOK_SECRET
- Subscription webhooks always answer 200 so Haravan does not retry
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from multilang.api.dependencies import get_subscription_tracker, get_token_lifecycle_manager
from multilang.credentials.lifecycle import TokenLifecycleManager
from multilang.credentials.redaction import redact_credential_data
from multilang.services.subscription_tracker import SubscriptionStateTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth/install", tags=["oauth"])


@router.get("/login", response_class=PlainTextResponse)
async def login(
    orgid: Optional[str] = Query(None),
    tracker: SubscriptionStateTracker = Depends(get_subscription_tracker),
):
    """Where the front end should send the tenant: install flow or the app."""
    return tracker.resolve_login_redirect(orgid)


@router.get("/grandservice")
async def install_callback(
    code: Optional[str] = Query(None),
    manager: TokenLifecycleManager = Depends(get_token_lifecycle_manager),
):
    """OAuth authorization-code callback. Redirects the tenant to the front end."""
    result = await manager.install(code)
    return RedirectResponse(url=result.redirect_url)


@router.get("/webhooks", response_class=PlainTextResponse)
async def webhook_handshake(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    tracker: SubscriptionStateTracker = Depends(get_subscription_tracker),
):
    return tracker.verify_webhook_challenge(mode, challenge, verify_token) or ""


@router.post("/webhooks")
async def receive_webhook(
    request: Request,
    x_haravan_topic: Optional[str] = Header(None, alias="x-haravan-topic"),
    x_haravan_org_id: Optional[str] = Header(None, alias="x-haravan-org-id"),
    tracker: SubscriptionStateTracker = Depends(get_subscription_tracker),
):
    body = await request.body()
    try:
        payload = json.loads(body) if body else {}
    except json.JSONDecodeError:
        logger.error(
            "Invalid webhook JSON payload",
            extra={"topic": x_haravan_topic, "tenant_id": x_haravan_org_id},
        )
        return {"status": "error", "message": "Invalid JSON payload"}

    logger.info(
        "Received webhook",
        extra={
            "topic": x_haravan_topic,
            "tenant_id": x_haravan_org_id,
            "subscription_status": payload.get("status") if isinstance(payload, dict) else None,
            "payload": redact_credential_data(payload),
        },
    )

    result = tracker.handle_webhook(
        x_haravan_topic,
        x_haravan_org_id,
        payload if isinstance(payload, dict) else {},
    )
    if result.error:
        return {"status": "error", "message": result.error}
    if result.ignored:
        return {"status": "ignored"}
    return {"status": "processed"}
