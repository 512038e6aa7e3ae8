"""Tenant subscription and quota services."""

from multilang.services.quota_ledger import QuotaLedger, QuotaStatus
from multilang.services.subscription_tracker import (
    SubscriptionStateTracker,
    TrialInfo,
    WebhookResult,
    parse_expiry,
)

__all__ = [
    "QuotaLedger",
    "QuotaStatus",
    "SubscriptionStateTracker",
    "TrialInfo",
    "WebhookResult",
    "parse_expiry",
]
