"""
Tests for install and refresh of tenant credentials.

CRITICAL: These tests verify that:
1. Refresh replaces only token fields and preserves status/quota/subscription
2. Reinstall never lowers quota or resets status
3. Upstream failures during refresh never raise
4. Tokens never appear in result reprs
"""

import pytest

from multilang.credentials.lifecycle import (
    RefreshResultStatus,
    needs_refresh,
)
from multilang.credentials.models import (
    CREDENTIAL_TTL_SECONDS,
    TRIAL_PERIOD_MS,
    TenantCredential,
    credential_key,
)
from multilang.platform.errors import MissingParameterError, UpstreamAuthError
from multilang.tests.conftest import (
    DAY_MS,
    MINUTE_MS,
    NOW_MS,
    make_id_token,
    seed_credential,
    token_transport,
)


def _token_payload(orgid="1000", access="access-new", refresh="refresh-new", expires_in=3600):
    payload = {
        "access_token": access,
        "expires_in": expires_in,
        "id_token": make_id_token(orgid),
    }
    if refresh is not None:
        payload["refresh_token"] = refresh
    return payload


# ============================================================================
# TEST SUITE: NEEDS REFRESH
# ============================================================================

class TestNeedsRefresh:

    def test_token_expiring_in_ten_minutes_needs_refresh(self):
        credential = TenantCredential(orgid="1", token_expires_at=NOW_MS + 10 * MINUTE_MS)

        assert needs_refresh(credential, NOW_MS) is True

    def test_token_expiring_in_one_hour_does_not_need_refresh(self):
        credential = TenantCredential(orgid="1", token_expires_at=NOW_MS + 60 * MINUTE_MS)

        assert needs_refresh(credential, NOW_MS) is False

    def test_legacy_record_without_expiry_needs_refresh(self):
        assert needs_refresh(TenantCredential(orgid="1"), NOW_MS) is True


# ============================================================================
# TEST SUITE: INSTALL
# ============================================================================

class TestInstall:

    @pytest.mark.asyncio
    async def test_first_install_creates_trial_record(self, make_manager, fake_redis):
        manager = make_manager(token_transport(_token_payload()))

        result = await manager.install("auth-code")

        record = fake_redis.json(credential_key("1000"))
        assert result.tenant_id == "1000"
        assert result.created is True
        assert result.redirect_url == "https://front.example.com?orgid=1000"
        assert record["status"] == "trial"
        assert record["quota_total"] == 100
        assert record["quota_remaining"] == 100
        assert record["subscription_expires_at"] == NOW_MS + TRIAL_PERIOD_MS
        assert record["token_expires_at"] == NOW_MS + 3600 * 1000
        assert record["access_token"] == "access-new"
        assert record["org_subject"] == "sub-1"
        assert fake_redis.ttls[credential_key("1000")] == CREDENTIAL_TTL_SECONDS

    @pytest.mark.asyncio
    async def test_reinstall_preserves_status_and_quota(self, make_manager, fake_redis):
        """CRITICAL: reinstalling never resets a paid tenant to trial."""
        seed_credential(
            fake_redis,
            status="active",
            quota_remaining=42,
            quota_total=10000,
            subscription_expires_at=NOW_MS + 20 * DAY_MS,
        )
        manager = make_manager(token_transport(_token_payload()))

        result = await manager.install("auth-code")

        record = fake_redis.json(credential_key("1000"))
        assert result.created is False
        assert record["status"] == "active"
        assert record["quota_remaining"] == 42
        assert record["quota_total"] == 10000
        assert record["subscription_expires_at"] == NOW_MS + 20 * DAY_MS
        assert record["access_token"] == "access-new"
        assert record["refresh_token"] == "refresh-new"

    @pytest.mark.asyncio
    async def test_install_sends_code_and_redirect_uri(self, make_manager):
        calls = []
        manager = make_manager(token_transport(_token_payload(), calls=calls))

        await manager.install("auth-code")

        body = calls[0].content.decode()
        assert "code=auth-code" in body
        assert "grant_type=authorization_code" in body
        assert "redirect_uri=" in body

    @pytest.mark.asyncio
    async def test_install_without_code_raises(self, make_manager):
        manager = make_manager(token_transport(_token_payload()))

        with pytest.raises(MissingParameterError) as exc_info:
            await manager.install("")

        assert exc_info.value.parameter == "code"

    @pytest.mark.asyncio
    async def test_install_with_empty_response_raises(self, make_manager, fake_redis):
        manager = make_manager(token_transport(payload=None))

        with pytest.raises(UpstreamAuthError):
            await manager.install("auth-code")

        assert fake_redis.data == {}

    @pytest.mark.asyncio
    async def test_install_with_rejected_exchange_raises(self, make_manager):
        manager = make_manager(token_transport({"error": "invalid_grant"}, status_code=400))

        with pytest.raises(UpstreamAuthError):
            await manager.install("bad-code")


# ============================================================================
# TEST SUITE: REFRESH
# ============================================================================

class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_replaces_only_token_fields(self, make_manager, fake_redis):
        """CRITICAL: refresh preserves every non-token field."""
        seed_credential(
            fake_redis,
            status="active",
            quota_remaining=7,
            quota_total=10000,
            subscription_expires_at=NOW_MS + 9 * DAY_MS,
        )
        manager = make_manager(token_transport(_token_payload(expires_in=7200)))

        result = await manager.refresh("1000", "refresh-old")

        record = fake_redis.json(credential_key("1000"))
        assert result.status == RefreshResultStatus.SUCCESS
        assert result.access_token == "access-new"
        assert record["access_token"] == "access-new"
        assert record["refresh_token"] == "refresh-new"
        assert record["token_expires_at"] == NOW_MS + 7200 * 1000
        assert record["status"] == "active"
        assert record["quota_remaining"] == 7
        assert record["quota_total"] == 10000
        assert record["subscription_expires_at"] == NOW_MS + 9 * DAY_MS

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_not_rotated(self, make_manager, fake_redis):
        seed_credential(fake_redis)
        manager = make_manager(token_transport(_token_payload(refresh=None)))

        await manager.refresh("1000", "refresh-old")

        assert fake_redis.json(credential_key("1000"))["refresh_token"] == "refresh-old"

    @pytest.mark.asyncio
    async def test_refresh_creates_record_when_absent(self, make_manager, fake_redis):
        manager = make_manager(token_transport(_token_payload()))

        result = await manager.refresh("2000", "refresh-x")

        record = fake_redis.json(credential_key("2000"))
        assert result.succeeded
        assert record["orgid"] == "2000"
        assert record["access_token"] == "access-new"

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_failed_result(self, make_manager, fake_redis):
        """Upstream rejection is reported, not raised; the record is untouched."""
        seeded = seed_credential(fake_redis)
        manager = make_manager(token_transport({"error": "invalid_grant"}, status_code=401))

        result = await manager.refresh("1000", "refresh-old")

        assert result.status == RefreshResultStatus.FAILED
        assert result.access_token is None
        assert result.succeeded is False
        assert fake_redis.json(credential_key("1000"))["access_token"] == seeded["access_token"]

    @pytest.mark.asyncio
    async def test_refresh_without_token_raises(self, make_manager):
        manager = make_manager(token_transport(_token_payload()))

        with pytest.raises(MissingParameterError):
            await manager.refresh("1000", None)

    @pytest.mark.asyncio
    async def test_result_repr_hides_token(self, make_manager, fake_redis):
        seed_credential(fake_redis)
        manager = make_manager(token_transport(_token_payload(access="super-secret-access")))

        result = await manager.refresh("1000", "refresh-old")

        assert "super-secret-access" not in repr(result)


# ============================================================================
# TEST SUITE: LEGACY RECORDS
# ============================================================================

class TestLegacyRecords:

    def test_legacy_expires_at_maps_to_subscription_expiry(self):
        credential = TenantCredential.from_dict("1", {"expires_at": NOW_MS, "orgsub": "s"})

        assert credential.subscription_expires_at == NOW_MS
        assert credential.token_expires_at is None
        assert credential.org_subject == "s"

    def test_credential_repr_hides_tokens(self):
        credential = TenantCredential(orgid="1", access_token="a-secret", refresh_token="r-secret")

        assert "a-secret" not in repr(credential)
        assert "r-secret" not in repr(credential)
