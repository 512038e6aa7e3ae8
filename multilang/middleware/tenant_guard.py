"""
Request-time tenant guard.

Every protected endpoint resolves the calling tenant and a usable access
token before the handler runs. Tokens close to expiry are refreshed
inline; a failed refresh falls back to the existing token (fail-open) so
a transient upstream outage does not lock tenants out of the app.

Usage (FastAPI dependency injection):
    from multilang.middleware.tenant_guard import require_tenant_session

    @router.post("/metafields/queue/create")
    async def enqueue_create(session: TenantSession = Depends(require_tenant_session)):
        ...

The tenant id is read from, in order: the ``orgid`` header, the ``orgid``
query parameter, the ``orgid`` field of a JSON body. The front end sends
the literal strings "null"/"undefined" when it has no tenant yet; those
count as missing.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from multilang.api.dependencies import get_token_lifecycle_manager
from multilang.credentials.lifecycle import TokenLifecycleManager, needs_refresh
from multilang.credentials.models import TenantCredential
from multilang.platform.errors import MissingParameterError, SessionExpiredError

logger = logging.getLogger(__name__)

TENANT_ID_FIELD = "orgid"

_EMPTY_TENANT_VALUES = ("", "null", "undefined")


@dataclass
class TenantSession:
    """
    Resolved tenant for the current request.

    SECURITY: repr() does NOT include the access token.
    """
    tenant_id: str
    access_token: str
    credential: TenantCredential
    refreshed: bool = False

    def __repr__(self) -> str:
        return f"<TenantSession(tenant_id={self.tenant_id}, refreshed={self.refreshed})>"


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text in _EMPTY_TENANT_VALUES:
        return None
    return text


async def extract_tenant_id(request: Request) -> Optional[str]:
    """Tenant id from header, query string or JSON body, first non-empty wins."""
    tenant_id = _clean(request.headers.get(TENANT_ID_FIELD))
    if tenant_id:
        return tenant_id

    tenant_id = _clean(request.query_params.get(TENANT_ID_FIELD))
    if tenant_id:
        return tenant_id

    content_type = request.headers.get("content-type", "")
    if request.method in ("POST", "PUT", "PATCH", "DELETE") and "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return _clean(body.get(TENANT_ID_FIELD))
    return None


class RequestTimeGuard:
    """Loads the tenant credential and refreshes it when close to expiry."""

    def __init__(self, manager: TokenLifecycleManager):
        self.manager = manager

    async def authorize(self, tenant_id: Optional[str]) -> TenantSession:
        """
        Raises:
            MissingParameterError: If tenant_id is empty
            SessionExpiredError: If no usable credential exists
        """
        tenant_id = _clean(tenant_id)
        if not tenant_id:
            raise MissingParameterError(TENANT_ID_FIELD, "Missing orgid")

        credential = self.manager.load(tenant_id)
        if credential is None or not credential.access_token:
            logger.info("No usable credential for tenant", extra={"tenant_id": tenant_id})
            raise SessionExpiredError()

        if not needs_refresh(credential, self.manager.now()) or not credential.refresh_token:
            return TenantSession(
                tenant_id=tenant_id,
                access_token=credential.access_token,
                credential=credential,
            )

        logger.info(
            "Access token close to expiry, refreshing",
            extra={"tenant_id": tenant_id, "token_expires_at": credential.token_expires_at},
        )
        result = await self.manager.refresh(tenant_id, credential.refresh_token)
        if result.succeeded:
            credential.access_token = result.access_token
            credential.token_expires_at = result.token_expires_at
            return TenantSession(
                tenant_id=tenant_id,
                access_token=result.access_token,
                credential=credential,
                refreshed=True,
            )

        # Fail-open: the existing token may still be accepted upstream
        logger.warning(
            "Lazy refresh failed, continuing with existing token",
            extra={"tenant_id": tenant_id, "error": result.error_message},
        )
        return TenantSession(
            tenant_id=tenant_id,
            access_token=credential.access_token,
            credential=credential,
        )


async def require_tenant_session(
    request: Request,
    manager: TokenLifecycleManager = Depends(get_token_lifecycle_manager),
) -> TenantSession:
    """FastAPI dependency resolving the calling tenant's session."""
    tenant_id = await extract_tenant_id(request)
    session = await RequestTimeGuard(manager).authorize(tenant_id)
    request.state.tenant_session = session
    return session
