"""
Subscription state derived from Haravan webhooks.

Two signals are maintained per tenant:
- The credential record's ``status`` / ``subscription_expires_at`` fields
  (read-modify-write, preserving token and quota fields)
- A SubscriptionRecord key whose TTL is the time left in the paid window.
  Its absence is the authoritative "not currently subscribed" signal, and
  it expires on its own when the subscription lapses.

Webhook processing never raises to the HTTP layer: the upstream sender
always gets a 200 so it does not enter a retry storm. Failures are
returned as WebhookResult and logged.
"""

import hmac
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from multilang.config.settings import HaravanConfig
from multilang.credentials.models import (
    CREDENTIAL_TTL_SECONDS,
    CredentialStatus,
    TenantCredential,
    credential_key,
    now_ms,
    subscription_key,
)
from multilang.credentials.store import CredentialStore
from multilang.integrations.haravan.oauth_client import HaravanOAuthClient
from multilang.platform.errors import InvalidWebhookSecretError, MissingParameterError

logger = logging.getLogger(__name__)

TOPIC_SUBSCRIPTION_UPDATE = "app_subscriptions/update"

DEFAULT_TRIAL_DAYS = 7
MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass
class WebhookResult:
    """Outcome of webhook processing, reported to logs rather than the sender."""
    topic: Optional[str]
    tenant_id: Optional[str]
    processed: bool
    ignored: bool = False
    error: Optional[str] = None


@dataclass
class SubscriptionUpdate:
    tenant_id: str
    status: str
    expires_at: Optional[int]
    credential_updated: bool
    subscription_recorded: bool


@dataclass
class TrialInfo:
    days_remaining: int
    expires_at: Optional[int]
    status: str

    def to_dict(self) -> dict:
        return {
            "daysRemaining": self.days_remaining,
            "expiresAt": self.expires_at,
            "status": self.status,
        }


def parse_expiry(value: Any) -> Optional[int]:
    """
    Parse an ``expired_at`` value into epoch milliseconds.

    Accepts ISO-8601 strings (with or without ``Z``) and numeric epoch
    milliseconds. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


class SubscriptionStateTracker:
    """Maintains tenant subscription state from webhook events."""

    def __init__(
        self,
        store: CredentialStore,
        config: HaravanConfig,
        oauth_client: HaravanOAuthClient,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.config = config
        self.oauth_client = oauth_client
        self._clock = clock

    # ------------------------------------------------------------------
    # Webhook handshake
    # ------------------------------------------------------------------

    def verify_webhook_challenge(
        self,
        mode: Optional[str],
        challenge: Optional[str],
        verify_token: Optional[str],
    ) -> Optional[str]:
        """
        Answer the upstream subscription handshake.

        Returns:
            ``challenge`` when ``verify_token`` matches the configured secret.

        Raises:
            MissingParameterError: If mode is absent
            InvalidWebhookSecretError: If verify_token is absent or does not match
        """
        if not mode:
            raise MissingParameterError("hub.mode")

        expected = (self.config.webhook_secret or "").encode("utf-8")
        provided = (verify_token or "").encode("utf-8")
        if not expected or not hmac.compare_digest(provided, expected):
            logger.warning("Webhook handshake rejected", extra={"mode": mode})
            raise InvalidWebhookSecretError()

        logger.info("Webhook handshake verified", extra={"mode": mode})
        return challenge

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_webhook(self, topic: Optional[str], tenant_id: Optional[str], body: Optional[dict]) -> WebhookResult:
        """
        Dispatch a webhook by topic.

        Never raises: unknown topics are ignored, processing errors are
        logged and reported in the result.
        """
        try:
            if topic == TOPIC_SUBSCRIPTION_UPDATE:
                if not tenant_id:
                    raise MissingParameterError("x-haravan-org-id")
                payload = body or {}
                self.handle_subscription_event(
                    tenant_id=tenant_id,
                    status=payload.get("status"),
                    expires_at=parse_expiry(payload.get("expired_at")),
                    payload=payload,
                )
                return WebhookResult(topic=topic, tenant_id=tenant_id, processed=True)

            logger.warning(
                "Unhandled webhook topic",
                extra={"topic": topic, "tenant_id": tenant_id},
            )
            return WebhookResult(topic=topic, tenant_id=tenant_id, processed=False, ignored=True)

        except Exception as e:
            logger.error(
                "Failed to process webhook",
                extra={
                    "topic": topic,
                    "tenant_id": tenant_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            return WebhookResult(topic=topic, tenant_id=tenant_id, processed=False, error=str(e))

    def handle_subscription_event(
        self,
        tenant_id: str,
        status: Optional[str],
        expires_at: Optional[int],
        payload: Optional[dict] = None,
    ) -> SubscriptionUpdate:
        """
        Apply an ``app_subscriptions/update`` event.

        - Existing credential: status and subscription_expires_at replaced,
          everything else preserved.
        - status == active: SubscriptionRecord written with TTL = seconds
          until expires_at.
        - any other status: SubscriptionRecord deleted.
        """
        if not status:
            raise MissingParameterError("status")

        def apply(current: Optional[dict]) -> Optional[dict]:
            if not current:
                return None
            credential = TenantCredential.from_dict(tenant_id, current)
            credential.status = status
            if expires_at is not None:
                credential.subscription_expires_at = expires_at
            credential.version += 1
            return credential.to_dict()

        written = self.store.update(credential_key(tenant_id), apply, ttl_seconds=CREDENTIAL_TTL_SECONDS)
        credential_updated = bool(written) and written.get("status") == status

        recorded = False
        if status == CredentialStatus.ACTIVE.value:
            ttl_seconds = None
            if expires_at is not None:
                ttl_seconds = math.floor((expires_at - self._clock()) / 1000)

            if ttl_seconds is None:
                logger.warning(
                    "Active subscription without expiry, not recorded",
                    extra={"tenant_id": tenant_id},
                )
            elif ttl_seconds <= 0:
                self.store.delete(subscription_key(tenant_id))
                logger.info(
                    "Active subscription already expired, record removed",
                    extra={"tenant_id": tenant_id, "expires_at": expires_at},
                )
            else:
                self.store.set(subscription_key(tenant_id), payload or {"status": status}, ttl_seconds=ttl_seconds)
                recorded = True
                logger.info(
                    "Updating subscription",
                    extra={"tenant_id": tenant_id, "ttl_seconds": ttl_seconds},
                )
        else:
            self.store.delete(subscription_key(tenant_id))
            logger.info(
                "Deleting subscription",
                extra={"tenant_id": tenant_id, "status": status},
            )

        return SubscriptionUpdate(
            tenant_id=tenant_id,
            status=status,
            expires_at=expires_at,
            credential_updated=credential_updated,
            subscription_recorded=recorded,
        )

    def is_subscribed(self, tenant_id: str) -> bool:
        return self.store.exists(subscription_key(tenant_id))

    # ------------------------------------------------------------------
    # Login / trial
    # ------------------------------------------------------------------

    def resolve_login_redirect(self, orgid: Optional[str]) -> str:
        """
        Where to send a tenant that opens the app.

        Unknown or unsubscribed tenants go through the install flow;
        subscribed tenants go straight to the front end.
        """
        if orgid is None or orgid.strip() in ("", "null", "undefined"):
            return self.oauth_client.build_install_url()
        if not self.is_subscribed(orgid):
            return self.oauth_client.build_install_url()
        return self.config.frontend_url

    def get_trial_info(self, orgid: str) -> TrialInfo:
        """Days left in the tenant's current subscription window."""
        data = self.store.get(credential_key(orgid))
        if not data:
            return TrialInfo(days_remaining=0, expires_at=None, status="not_installed")

        credential = TenantCredential.from_dict(orgid, data)
        if credential.subscription_expires_at is None:
            return TrialInfo(
                days_remaining=DEFAULT_TRIAL_DAYS,
                expires_at=None,
                status=credential.status or CredentialStatus.TRIAL.value,
            )

        diff = credential.subscription_expires_at - self._clock()
        days = math.ceil(diff / MS_PER_DAY)
        return TrialInfo(
            days_remaining=max(0, days),
            expires_at=credential.subscription_expires_at,
            status=credential.status or CredentialStatus.TRIAL.value,
        )
