"""
Haravan OAuth token endpoint client.

Handles:
- Building the install (authorize) URL
- Authorization-code exchange at install time
- Refresh-token exchange

Both exchanges are form-encoded POSTs to HRV_URL_CONNECT_TOKEN and return
JSON {id_token, access_token, refresh_token, expires_in}.

SECURITY: client_secret and token values are never logged.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from multilang.config.settings import HaravanConfig
from multilang.platform.errors import UpstreamAuthError

logger = logging.getLogger(__name__)

TOKEN_REQUEST_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class TokenResponse:
    """
    Parsed token endpoint response.

    SECURITY: repr() hides token values.
    """
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]
    id_token: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"<TokenResponse(expires_in={self.expires_in}, "
            f"has_refresh_token={bool(self.refresh_token)}, has_id_token={bool(self.id_token)})>"
        )


class HaravanOAuthClient:
    """Client for the Haravan OAuth token endpoint."""

    def __init__(
        self,
        config: HaravanConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Haravan application settings
            transport: Optional httpx transport (tests inject MockTransport)
        """
        self.config = config
        self._transport = transport

    def build_install_url(self) -> str:
        """Authorize URL that starts the install flow."""
        query = urlencode({
            "response_type": self.config.response_type,
            "scope": self.config.scope_install,
            "client_id": self.config.client_id,
            "redirect_uri": self.config.install_callback_url,
            "nonce": self.config.nonce,
        })
        return f"{self.config.url_authorize}?{query}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for tokens."""
        return await self._request_token(
            {
                "code": code,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": self.config.grant_type_install,
                "redirect_uri": self.config.install_callback_url,
            },
            grant="authorization_code",
        )

    async def exchange_refresh_token(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new access token."""
        return await self._request_token(
            {
                "refresh_token": refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": self.config.grant_type_refresh,
            },
            grant="refresh_token",
        )

    async def _request_token(self, form: dict[str, str], grant: str) -> TokenResponse:
        """
        POST the form to the token endpoint.

        Raises:
            UpstreamAuthError: On transport failure, non-2xx status, or a
                response without a JSON body / access token.
        """
        try:
            async with httpx.AsyncClient(
                timeout=TOKEN_REQUEST_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.config.url_connect_token,
                    data=form,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as exc:
            logger.error(
                "Token endpoint request failed",
                extra={"grant": grant, "error_type": type(exc).__name__},
            )
            raise UpstreamAuthError(f"Token endpoint unreachable: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Token endpoint rejected exchange",
                extra={"grant": grant, "status_code": response.status_code},
            )
            raise UpstreamAuthError(
                f"Token exchange failed: {response.status_code}",
                details={"status_code": response.status_code},
            )

        data = _json_body(response)
        if not data or not data.get("access_token"):
            logger.warning("Token endpoint returned no body", extra={"grant": grant})
            raise UpstreamAuthError("Token endpoint returned an empty response")

        expires_in = data.get("expires_in")
        return TokenResponse(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            id_token=data.get("id_token"),
        )


def _json_body(response: httpx.Response) -> Optional[dict[str, Any]]:
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
