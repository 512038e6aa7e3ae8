"""
Tests for identity token decoding and credential redaction.

SECURITY: tokens must never survive redaction.
"""

from unittest.mock import MagicMock, patch

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from multilang.credentials.identity import IdentityTokenDecoder
from multilang.credentials.redaction import (
    REDACTED_VALUE,
    redact_credential_data,
    token_fingerprint,
)
from multilang.platform.errors import UpstreamAuthError
from multilang.tests.conftest import make_id_token


class TestIdentityTokenDecoder:

    def test_decodes_orgid_and_orgsub(self):
        identity = IdentityTokenDecoder(client_id="c").decode(make_id_token("42", "sub-42"))

        assert identity.orgid == "42"
        assert identity.orgsub == "sub-42"

    def test_numeric_orgid_becomes_string(self):
        token = jwt.encode({"orgid": 42}, "test-signing-key-for-identity-tokens-0123456789", algorithm="HS256")

        assert IdentityTokenDecoder(client_id="c").decode(token).orgid == "42"

    @pytest.mark.parametrize("token", [None, "", "not.a.jwt"])
    def test_missing_or_malformed_token_rejected(self, token):
        with pytest.raises(UpstreamAuthError):
            IdentityTokenDecoder(client_id="c").decode(token)

    def test_token_without_orgid_rejected(self):
        token = jwt.encode({"sub": "x"}, "test-signing-key-for-identity-tokens-0123456789", algorithm="HS256")

        with pytest.raises(UpstreamAuthError):
            IdentityTokenDecoder(client_id="c").decode(token)


JWKS_URL = "https://accounts.haravan.com/.well-known/openid-configuration/jwks"


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks_decoder(signing_key):
    """Decoder whose JWKS lookup returns the test key's public half."""
    with patch("multilang.credentials.identity.jwt.PyJWKClient") as jwks_client_cls:
        jwks_client_cls.return_value.get_signing_key_from_jwt.return_value = MagicMock(
            key=signing_key.public_key()
        )
        decoder = IdentityTokenDecoder(client_id="client-123", jwks_url=JWKS_URL)
    jwks_client_cls.assert_called_once_with(JWKS_URL)
    return decoder


class TestVerifiedIdentityToken:

    def test_signed_token_with_matching_audience_verifies(self, jwks_decoder, signing_key):
        token = jwt.encode({"orgid": "42", "orgsub": "s", "aud": "client-123"}, signing_key, algorithm="RS256")

        identity = jwks_decoder.decode(token)

        assert identity.orgid == "42"
        assert identity.orgsub == "s"

    def test_wrong_audience_rejected(self, jwks_decoder, signing_key):
        token = jwt.encode({"orgid": "42", "aud": "someone-else"}, signing_key, algorithm="RS256")

        with pytest.raises(UpstreamAuthError):
            jwks_decoder.decode(token)

    def test_token_signed_by_other_key_rejected(self, jwks_decoder):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        token = jwt.encode({"orgid": "42", "aud": "client-123"}, other_key, algorithm="RS256")

        with pytest.raises(UpstreamAuthError):
            jwks_decoder.decode(token)

    def test_unsigned_hs256_token_rejected(self, jwks_decoder):
        with pytest.raises(UpstreamAuthError):
            jwks_decoder.decode(make_id_token("42"))


class TestRedaction:

    def test_tokens_redacted_and_safe_fields_kept(self):
        record = {
            "orgid": "1000",
            "access_token": "a-secret",
            "refresh_token": "r-secret",
            "token_expires_at": 123,
            "status": "active",
            "nested": [{"client_secret": "s"}],
        }

        redacted = redact_credential_data(record)

        assert redacted["access_token"] == REDACTED_VALUE
        assert redacted["refresh_token"] == REDACTED_VALUE
        assert redacted["nested"][0]["client_secret"] == REDACTED_VALUE
        assert redacted["orgid"] == "1000"
        assert redacted["token_expires_at"] == 123
        assert redacted["status"] == "active"

    def test_fingerprint_is_stable_and_not_the_token(self):
        assert token_fingerprint("abc") == token_fingerprint("abc")
        assert token_fingerprint("abc") != "abc"
        assert len(token_fingerprint("abc")) == 12
        assert token_fingerprint(None) is None
