"""
Tenant credential record and storage key layout.

Key schema:
- haravan:multilanguage:app_install:{orgid}       -> JSON TenantCredential (TTL 30 days, refreshed on write)
- haravan:multilanguage:app_subscriptions:{orgid} -> raw webhook body (TTL = seconds until expired_at)
- haravan:multilanguage:quota_used:{orgid}        -> integer counter (no TTL)

Two expiry clocks live on the record and are never collapsed:
- token_expires_at:        when the OAuth access token stops working
- subscription_expires_at: end of the commercial subscription window

Timestamps are epoch milliseconds, the format the front end already reads.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

KEY_PREFIX = "haravan:multilanguage"

# Storage retention, independent of token expiry
CREDENTIAL_TTL_SECONDS = 30 * 24 * 60 * 60

TRIAL_PERIOD_MS = 7 * 24 * 60 * 60 * 1000


class CredentialStatus(str, Enum):
    """Tenant status values."""
    TRIAL = "trial"
    ACTIVE = "active"
    UNACTIVE = "unactive"
    CANCELLED = "cancelled"
    NEEDS_REINSTALL = "needs_reinstall"


# Statuses the nightly sweep never refreshes
INACTIVE_STATUSES = frozenset({CredentialStatus.UNACTIVE.value, CredentialStatus.CANCELLED.value})


def now_ms() -> int:
    return int(time.time() * 1000)


def credential_key(tenant_id: str) -> str:
    return f"{KEY_PREFIX}:app_install:{tenant_id}"


def credential_key_pattern() -> str:
    return f"{KEY_PREFIX}:app_install:*"


def tenant_id_from_key(key: str) -> str:
    return key.rsplit(":", 1)[-1]


def subscription_key(tenant_id: str) -> str:
    return f"{KEY_PREFIX}:app_subscriptions:{tenant_id}"


def quota_key(tenant_id: str) -> str:
    return f"{KEY_PREFIX}:quota_used:{tenant_id}"


@dataclass
class TenantCredential:
    """
    One credential record per tenant.

    SECURITY: repr() never includes token values.
    """

    orgid: str
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    token_expires_at: Optional[int] = None
    status: str = CredentialStatus.TRIAL.value
    subscription_expires_at: Optional[int] = None
    quota_remaining: int = 0
    quota_total: int = 0
    org_subject: Optional[str] = None
    version: int = 0

    @classmethod
    def from_dict(cls, tenant_id: str, data: dict[str, Any]) -> "TenantCredential":
        """
        Build a credential from a stored record.

        Records written before the expiry clocks were split carry the
        subscription expiry under ``expires_at``.
        """
        subscription_expires_at = data.get("subscription_expires_at")
        if subscription_expires_at is None:
            subscription_expires_at = data.get("expires_at")

        return cls(
            orgid=str(data.get("orgid") or tenant_id),
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            token_expires_at=_as_int(data.get("token_expires_at")),
            status=data.get("status") or CredentialStatus.TRIAL.value,
            subscription_expires_at=_as_int(subscription_expires_at),
            quota_remaining=int(data.get("quota_remaining") or 0),
            quota_total=int(data.get("quota_total") or 0),
            org_subject=data.get("org_subject") or data.get("orgsub"),
            version=int(data.get("version") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def subscription_lapsed(self, now: Optional[int] = None) -> bool:
        if self.subscription_expires_at is None:
            return False
        return (now if now is not None else now_ms()) > self.subscription_expires_at


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)
