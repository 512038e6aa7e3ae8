"""Haravan platform integration: OAuth token endpoint and Admin API."""

from multilang.integrations.haravan.api_client import HaravanAPIClient, HaravanAPIError
from multilang.integrations.haravan.oauth_client import HaravanOAuthClient, TokenResponse

__all__ = [
    "HaravanAPIClient",
    "HaravanAPIError",
    "HaravanOAuthClient",
    "TokenResponse",
]
