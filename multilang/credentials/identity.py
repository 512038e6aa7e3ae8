"""
Identity token (OIDC id_token) decoding for the install exchange.

The id_token identifies the installing organization:
- orgid:  tenant id
- orgsub: tenant-scoped subject

When HRV_JWKS_URL is configured the token signature is verified against
the issuer's published keys (RS256, audience = client id). Without it the
payload is decoded unverified; that is only acceptable because the token
arrives directly from the token endpoint over TLS in the same response
that the client secret authenticated.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import jwt

from multilang.platform.errors import UpstreamAuthError

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ["RS256"]


@dataclass(frozen=True)
class OrgIdentity:
    orgid: str
    orgsub: Optional[str]


class IdentityTokenDecoder:
    """Extracts the organization identity from an id_token."""

    def __init__(self, client_id: str, jwks_url: Optional[str] = None):
        self.client_id = client_id
        self.jwks_url = jwks_url
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

    def decode(self, id_token: Optional[str]) -> OrgIdentity:
        """
        Decode ``id_token`` and return the organization identity.

        Raises:
            UpstreamAuthError: If the token is missing, malformed, fails
                signature verification, or carries no orgid.
        """
        if not id_token:
            raise UpstreamAuthError("Token response did not include an id_token")

        try:
            if self._jwks_client is not None:
                signing_key = self._jwks_client.get_signing_key_from_jwt(id_token)
                claims = jwt.decode(
                    id_token,
                    signing_key.key,
                    algorithms=SUPPORTED_ALGORITHMS,
                    audience=self.client_id,
                )
            else:
                claims = jwt.decode(
                    id_token,
                    options={"verify_signature": False},
                )
        except jwt.PyJWTError as exc:
            logger.warning(
                "Identity token rejected",
                extra={"error_type": type(exc).__name__, "verified": self._jwks_client is not None},
            )
            raise UpstreamAuthError("Identity token could not be validated") from exc

        orgid = claims.get("orgid")
        if orgid in (None, ""):
            raise UpstreamAuthError("Identity token does not contain an orgid")

        orgsub = claims.get("orgsub")
        return OrgIdentity(orgid=str(orgid), orgsub=str(orgsub) if orgsub is not None else None)
