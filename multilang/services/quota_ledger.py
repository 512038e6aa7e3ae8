"""
Per-tenant usage quota for chargeable operations.

The authoritative usage counter is an integer key incremented with INCRBY,
so concurrent charges never lose each other. The tier allotment comes from
configuration: paid tenants (status == active) get the paid limit, every
other tenant gets the trial limit.

The derived ``quota_remaining`` / ``quota_total`` values are mirrored onto
the credential record for the front end. That mirror is best effort: a
failed mirror is logged and does not undo the charge.

Usage:
    ledger = QuotaLedger(store, quota_config)

    ledger.require_quota(tenant_id, 3)          # raises QuotaExceededError (402)
    result = await ledger.run_chargeable(tenant_id, 1, translate)
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from multilang.config.settings import QuotaConfig
from multilang.credentials.models import (
    CREDENTIAL_TTL_SECONDS,
    CredentialStatus,
    TenantCredential,
    credential_key,
    quota_key,
)
from multilang.credentials.store import CredentialStore
from multilang.platform.errors import (
    ConcurrentUpdateError,
    QuotaExceededError,
    StoreUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class QuotaStatus:
    """Current usage for one tenant."""
    used: int
    remaining: int
    max: int

    def to_dict(self) -> dict:
        return {"used": self.used, "remaining": self.remaining, "max": self.max}


class QuotaLedger:
    """Reads and charges the per-tenant usage counter."""

    def __init__(self, store: CredentialStore, quota_config: QuotaConfig):
        self.store = store
        self.quota_config = quota_config

    def _limit_for(self, credential: Optional[TenantCredential]) -> int:
        if credential is not None and credential.status == CredentialStatus.ACTIVE.value:
            return self.quota_config.paid_limit
        return self.quota_config.trial_limit

    def _load_credential(self, tenant_id: str) -> Optional[TenantCredential]:
        data = self.store.get(credential_key(tenant_id))
        if not data:
            return None
        return TenantCredential.from_dict(tenant_id, data)

    def get_quota(self, tenant_id: str) -> QuotaStatus:
        used = self.store.get_int(quota_key(tenant_id))
        limit = self._limit_for(self._load_credential(tenant_id))
        return QuotaStatus(used=used, remaining=max(0, limit - used), max=limit)

    def check_quota(self, tenant_id: str, request_count: int = 1) -> bool:
        return self.get_quota(tenant_id).remaining >= request_count

    def require_quota(self, tenant_id: str, request_count: int = 1) -> QuotaStatus:
        """
        Raises:
            QuotaExceededError: If fewer than ``request_count`` operations remain
        """
        quota = self.get_quota(tenant_id)
        if quota.remaining < request_count:
            logger.warning(
                "Quota exceeded",
                extra={
                    "tenant_id": tenant_id,
                    "requested": request_count,
                    "remaining": quota.remaining,
                    "max": quota.max,
                },
            )
            raise QuotaExceededError(tenant_id, request_count, quota.remaining)
        return quota

    def use_quota(self, tenant_id: str, count: int = 1) -> int:
        """
        Charge ``count`` operations.

        Call only after the chargeable operation succeeded.

        Returns:
            The new used total.
        """
        if count < 0:
            raise ValidationError("Quota charge must not be negative", details={"count": count})

        used = self.store.incr(quota_key(tenant_id), count)
        self._mirror_onto_credential(tenant_id, used)

        logger.info(
            "Quota charged",
            extra={"tenant_id": tenant_id, "count": count, "used": used},
        )
        return used

    async def run_chargeable(
        self,
        tenant_id: str,
        count: int,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Check quota, run ``operation``, and charge only if it succeeded."""
        self.require_quota(tenant_id, count)
        result = await operation()
        self.use_quota(tenant_id, count)
        return result

    def _mirror_onto_credential(self, tenant_id: str, used: int) -> None:
        def apply(current: Optional[dict]) -> Optional[dict]:
            if not current:
                return None
            credential = TenantCredential.from_dict(tenant_id, current)
            limit = self._limit_for(credential)
            credential.quota_total = limit
            credential.quota_remaining = max(0, limit - used)
            credential.version += 1
            return credential.to_dict()

        try:
            self.store.update(credential_key(tenant_id), apply, ttl_seconds=CREDENTIAL_TTL_SECONDS)
        except (StoreUnavailableError, ConcurrentUpdateError) as e:
            logger.warning(
                "Failed to mirror quota onto credential",
                extra={"tenant_id": tenant_id, "error_code": e.code},
            )
