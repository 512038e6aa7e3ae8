"""
Credentials module for tenant OAuth credential management.

This module provides:
- Redis-backed credential storage with TTL and optimistic updates
- Install (authorization-code) and refresh (refresh-token) exchanges
- Merge-preserving updates so token, status and quota fields never clobber each other
- Redaction helpers so tokens never reach logs

SECURITY:
- Tokens NEVER appear in logs or API responses
- Allowed in logs: orgid, status, expiry timestamps, token fingerprints

Usage:
    from multilang.credentials import CredentialStore, TokenLifecycleManager

    manager = TokenLifecycleManager(store, oauth_client, decoder, quota_config, frontend_url)
    result = await manager.refresh(tenant_id, refresh_token)
"""

from multilang.credentials.identity import IdentityTokenDecoder, OrgIdentity
from multilang.credentials.lifecycle import (
    InstallResult,
    RefreshResult,
    RefreshResultStatus,
    TokenLifecycleManager,
    needs_refresh,
)
from multilang.credentials.models import CredentialStatus, TenantCredential
from multilang.credentials.redaction import redact_credential_data, token_fingerprint
from multilang.credentials.store import CredentialStore, get_credential_store

__all__ = [
    # Store
    "CredentialStore",
    "get_credential_store",
    # Model
    "CredentialStatus",
    "TenantCredential",
    # Identity
    "IdentityTokenDecoder",
    "OrgIdentity",
    # Lifecycle
    "InstallResult",
    "RefreshResult",
    "RefreshResultStatus",
    "TokenLifecycleManager",
    "needs_refresh",
    # Redaction
    "redact_credential_data",
    "token_fingerprint",
]
