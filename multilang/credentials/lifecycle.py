"""
Token lifecycle for tenant credentials: install, refresh, merge.

Four paths write the credential record (install callback, request-time
lazy refresh, nightly sweep, subscription webhooks). All of them go
through CredentialStore.update so a concurrent writer is never silently
overwritten, and each path only replaces the fields it owns:

- install / refresh: access_token, refresh_token, token_expires_at
- webhooks:          status, subscription_expires_at
- quota ledger:      quota_remaining, quota_total

Usage:
    manager = TokenLifecycleManager(store, oauth_client, decoder, quota_config, frontend_url)

    # Install callback
    result = await manager.install(code)

    # Refresh (never raises on upstream failure)
    result = await manager.refresh(tenant_id, credential.refresh_token)
    if result.succeeded:
        token = result.access_token
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from multilang.config.settings import QuotaConfig
from multilang.credentials.identity import IdentityTokenDecoder
from multilang.credentials.models import (
    CREDENTIAL_TTL_SECONDS,
    TRIAL_PERIOD_MS,
    CredentialStatus,
    TenantCredential,
    credential_key,
    now_ms,
)
from multilang.credentials.redaction import token_fingerprint
from multilang.credentials.store import CredentialStore
from multilang.integrations.haravan.oauth_client import HaravanOAuthClient, TokenResponse
from multilang.platform.errors import (
    ConcurrentUpdateError,
    MissingParameterError,
    StoreUnavailableError,
    UpstreamAuthError,
)

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this window
DEFAULT_REFRESH_WINDOW_MINUTES = 30
REFRESH_WINDOW_MS = DEFAULT_REFRESH_WINDOW_MINUTES * 60 * 1000


class RefreshResultStatus(str, Enum):
    """Result status for refresh operations."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """
    Result of a token refresh operation.

    A FAILED result means the stored credential is unchanged; callers
    decide whether to fall back to the existing token.

    SECURITY: repr() does NOT include token values.
    """
    status: RefreshResultStatus
    tenant_id: str
    access_token: Optional[str] = None
    token_expires_at: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RefreshResultStatus.SUCCESS and bool(self.access_token)

    def __repr__(self) -> str:
        return (
            f"<RefreshResult(status={self.status.value}, tenant_id={self.tenant_id}, "
            f"token_expires_at={self.token_expires_at}, error_message={self.error_message!r})>"
        )


@dataclass(frozen=True)
class InstallResult:
    tenant_id: str
    redirect_url: str
    created: bool


def needs_refresh(credential: TenantCredential, now: Optional[int] = None) -> bool:
    """
    Check if credential needs refresh.

    Legacy records without token_expires_at count as expired.
    """
    if credential.token_expires_at is None:
        return True
    current = now if now is not None else now_ms()
    return credential.token_expires_at - current < REFRESH_WINDOW_MS


class TokenLifecycleManager:
    """
    Orchestrates the authorization-code and refresh-token exchanges and
    merges their results into the tenant credential record.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: HaravanOAuthClient,
        identity_decoder: IdentityTokenDecoder,
        quota_config: QuotaConfig,
        frontend_url: str,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            store: Credential store
            oauth_client: Token endpoint client
            identity_decoder: Extracts orgid/orgsub from the id_token
            quota_config: Trial allotment for first installs
            frontend_url: Where the tenant is sent after install
            clock: Current time in epoch ms (injectable for tests)
        """
        self.store = store
        self.oauth_client = oauth_client
        self.identity_decoder = identity_decoder
        self.quota_config = quota_config
        self.frontend_url = frontend_url
        self._clock = clock

    def now(self) -> int:
        return self._clock()

    def load(self, tenant_id: str) -> Optional[TenantCredential]:
        data = self.store.get(credential_key(tenant_id))
        if not data:
            return None
        return TenantCredential.from_dict(tenant_id, data)

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    async def install(self, auth_code: Optional[str]) -> InstallResult:
        """
        Exchange an authorization code and create or merge the credential.

        Raises:
            MissingParameterError: If auth_code is empty
            UpstreamAuthError: If the exchange or the id_token is rejected
        """
        if not auth_code:
            raise MissingParameterError("code", "Missing Code")

        token = await self.oauth_client.exchange_code(auth_code)
        identity = self.identity_decoder.decode(token.id_token)
        tenant_id = identity.orgid
        existed = False

        def merge(current: Optional[dict]) -> dict:
            nonlocal existed
            now = self._clock()
            if current:
                existed = True
                credential = TenantCredential.from_dict(tenant_id, current)
                credential.org_subject = identity.orgsub or credential.org_subject
            else:
                existed = False
                credential = TenantCredential(
                    orgid=tenant_id,
                    status=CredentialStatus.TRIAL.value,
                    subscription_expires_at=now + TRIAL_PERIOD_MS,
                    quota_remaining=self.quota_config.trial_limit,
                    quota_total=self.quota_config.trial_limit,
                    org_subject=identity.orgsub,
                )
            self._apply_token(credential, token, now)
            return credential.to_dict()

        self.store.update(credential_key(tenant_id), merge, ttl_seconds=CREDENTIAL_TTL_SECONDS)

        logger.info(
            "Tenant installed",
            extra={
                "action": "credential.installed",
                "tenant_id": tenant_id,
                "reinstall": existed,
                "access_token_fp": token_fingerprint(token.access_token),
            },
        )

        return InstallResult(
            tenant_id=tenant_id,
            redirect_url=f"{self.frontend_url}?orgid={tenant_id}",
            created=not existed,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, tenant_id: str, refresh_token: Optional[str]) -> RefreshResult:
        """
        Exchange ``refresh_token`` and merge the new tokens into the record.

        Only token fields change; status, quota and subscription expiry are
        preserved. A missing record is created from the token fields alone.

        Returns:
            RefreshResult. Upstream or store failures yield FAILED, never raise.

        Raises:
            MissingParameterError: If refresh_token is empty
        """
        if not refresh_token:
            raise MissingParameterError("refresh_token", "No Refresh Token")

        try:
            token = await self.oauth_client.exchange_refresh_token(refresh_token)
        except UpstreamAuthError as e:
            logger.error(
                "Token refresh failed",
                extra={
                    "tenant_id": tenant_id,
                    # Note: error message is logged but NOT tokens
                    "error": e.message,
                },
            )
            return RefreshResult(
                status=RefreshResultStatus.FAILED,
                tenant_id=tenant_id,
                error_message=e.message,
            )

        def merge(current: Optional[dict]) -> dict:
            if current:
                credential = TenantCredential.from_dict(tenant_id, current)
            else:
                credential = TenantCredential(orgid=tenant_id)
            self._apply_token(credential, token, self._clock())
            return credential.to_dict()

        try:
            written = self.store.update(credential_key(tenant_id), merge, ttl_seconds=CREDENTIAL_TTL_SECONDS)
        except (StoreUnavailableError, ConcurrentUpdateError) as e:
            # Upstream may already have rotated the refresh token
            logger.error(
                "Refreshed token could not be persisted",
                extra={
                    "tenant_id": tenant_id,
                    "error_code": e.code,
                    "access_token_fp": token_fingerprint(token.access_token),
                },
            )
            return RefreshResult(
                status=RefreshResultStatus.FAILED,
                tenant_id=tenant_id,
                error_message=e.message,
            )

        token_expires_at = written.get("token_expires_at") if written else None
        logger.info(
            "Credential refreshed successfully",
            extra={
                "action": "credential.refreshed",
                "tenant_id": tenant_id,
                "token_expires_at": token_expires_at,
            },
        )

        return RefreshResult(
            status=RefreshResultStatus.SUCCESS,
            tenant_id=tenant_id,
            access_token=token.access_token,
            token_expires_at=token_expires_at,
        )

    @staticmethod
    def _apply_token(credential: TenantCredential, token: TokenResponse, now: int) -> None:
        credential.access_token = token.access_token
        if token.refresh_token:
            credential.refresh_token = token.refresh_token
        credential.token_expires_at = now + token.expires_in * 1000 if token.expires_in else None
        credential.version += 1
