"""
Shared fixtures for the multilanguage backend tests.

FakeRedis is a dict-backed stand-in for the subset of redis-py the
CredentialStore uses, including WATCH/MULTI pipelines so optimistic
update retries can be exercised deterministically.
"""

import fnmatch
import json
from typing import Callable, Dict, List, Optional

import httpx
import jwt
import pytest
import redis

from multilang.config.settings import HaravanConfig, QuotaConfig
from multilang.credentials.identity import IdentityTokenDecoder
from multilang.credentials.lifecycle import TokenLifecycleManager
from multilang.credentials.models import CREDENTIAL_TTL_SECONDS, credential_key
from multilang.credentials.store import CredentialStore
from multilang.integrations.haravan.oauth_client import HaravanOAuthClient

NOW_MS = 1_700_000_000_000
MINUTE_MS = 60 * 1000
DAY_MS = 24 * 60 * MINUTE_MS


# ============================================================================
# In-memory Redis
# ============================================================================

class FakePipeline:
    """WATCH/MULTI/EXEC pipeline over FakeRedis."""

    def __init__(self, client: "FakeRedis"):
        self._client = client
        self._watched: Dict[str, int] = {}
        self._commands: Optional[List] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()
        return False

    def reset(self):
        self._watched = {}
        self._commands = None

    def watch(self, *keys):
        for key in keys:
            self._watched[key] = self._client.versions.get(key, 0)

    def unwatch(self):
        self._watched = {}

    def multi(self):
        self._commands = []

    def get(self, key):
        if self._commands is None:
            return self._client.get(key)
        self._commands.append(("get", (key,), {}))
        return self

    def set(self, key, value, ex=None, nx=False):
        self._commands.append(("set", (key, value), {"ex": ex, "nx": nx}))
        return self

    def delete(self, *keys):
        self._commands.append(("delete", keys, {}))
        return self

    def execute(self):
        if self._client.before_execute:
            hook = self._client.before_execute.pop(0)
            hook(self._client)

        for key, version in self._watched.items():
            if self._client.versions.get(key, 0) != version:
                self.reset()
                raise redis.WatchError("Watched variable changed.")

        results = [getattr(self._client, name)(*args, **kwargs) for name, args, kwargs in self._commands or []]
        self.reset()
        return results


class FakeRedis:
    """Dict-backed subset of redis.Redis with decode_responses=True semantics."""

    def __init__(self):
        self.data: Dict[str, object] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.versions: Dict[str, int] = {}
        # Callables run (once each) at the start of pipeline.execute()
        self.before_execute: List[Callable[["FakeRedis"], None]] = []

    def _touch(self, key):
        self.versions[key] = self.versions.get(key, 0) + 1

    def get(self, key):
        value = self.data.get(key)
        if isinstance(value, list):
            raise redis.ResponseError("WRONGTYPE")
        return value

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        self.ttls[key] = ex
        self._touch(key)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                self._touch(key)
                removed += 1
        return removed

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.data)

    def scan_iter(self, match=None, count=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def incrby(self, key, amount=1):
        value = int(self.data.get(key) or 0) + amount
        self.data[key] = str(value)
        self._touch(key)
        return value

    def rpush(self, key, *values):
        items = self.data.setdefault(key, [])
        items.extend(values)
        self._touch(key)
        return len(items)

    def llen(self, key):
        items = self.data.get(key)
        return len(items) if isinstance(items, list) else 0

    def lpop(self, key):
        items = self.data.get(key)
        if not items:
            return None
        value = items.pop(0)
        if not items:
            del self.data[key]
        self._touch(key)
        return value

    def pipeline(self):
        return FakePipeline(self)

    # -- assertion helpers ------------------------------------------------

    def json(self, key):
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None


class MutableClock:
    """Injectable epoch-ms clock."""

    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return CredentialStore(fake_redis)


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def haravan_config():
    return HaravanConfig(
        client_id="client-123",
        client_secret="secret-xyz",
        url_authorize="https://accounts.haravan.com/connect/authorize",
        url_connect_token="https://accounts.haravan.com/connect/token",
        install_callback_url="https://app.example.com/api/oauth/install/grandservice",
        scope_install="openid profile email org userinfo com.write_products",
        nonce="nonce-1",
        webhook_secret="hook-secret",
        frontend_url="https://front.example.com",
        api_base_url="https://apis.haravan.com",
    )


@pytest.fixture
def quota_config():
    return QuotaConfig(trial_limit=100, paid_limit=10000)


def make_id_token(orgid="1000", orgsub="sub-1") -> str:
    claims = {"orgid": orgid}
    if orgsub is not None:
        claims["orgsub"] = orgsub
    return jwt.encode(claims, "test-signing-key-for-identity-tokens-0123456789", algorithm="HS256")


def token_transport(payload=None, status_code=200, calls=None) -> httpx.MockTransport:
    """MockTransport answering every token request with ``payload``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if payload is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


def seed_credential(fake_redis: FakeRedis, tenant_id: str = "1000", **fields) -> dict:
    record = {
        "orgid": tenant_id,
        "access_token": "access-old",
        "refresh_token": "refresh-old",
        "token_expires_at": NOW_MS + 60 * MINUTE_MS,
        "status": "trial",
        "subscription_expires_at": NOW_MS + 5 * DAY_MS,
        "quota_remaining": 100,
        "quota_total": 100,
        "org_subject": "sub-1",
        "version": 1,
    }
    record.update(fields)
    fake_redis.set(credential_key(tenant_id), json.dumps(record), ex=CREDENTIAL_TTL_SECONDS)
    return record


@pytest.fixture
def make_manager(store, haravan_config, quota_config, clock):
    """Build a TokenLifecycleManager whose token endpoint is ``transport``."""

    def _make(transport: httpx.MockTransport) -> TokenLifecycleManager:
        return TokenLifecycleManager(
            store=store,
            oauth_client=HaravanOAuthClient(haravan_config, transport=transport),
            identity_decoder=IdentityTokenDecoder(client_id=haravan_config.client_id),
            quota_config=quota_config,
            frontend_url=haravan_config.frontend_url,
            clock=clock,
        )

    return _make
