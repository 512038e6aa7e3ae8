"""
Process-wide service instances for routes and workers.

Each getter builds its object once from ``get_settings()`` and returns the
same instance afterwards. Routes take them through ``Depends()`` so tests
can swap any of them with ``app.dependency_overrides``.
"""

from typing import Optional

from multilang.config.settings import get_settings
from multilang.credentials.identity import IdentityTokenDecoder
from multilang.credentials.lifecycle import TokenLifecycleManager
from multilang.credentials.store import CredentialStore, get_credential_store
from multilang.integrations.haravan.api_client import HaravanAPIClient
from multilang.integrations.haravan.oauth_client import HaravanOAuthClient
from multilang.jobs.queue import JobDispatchQueue
from multilang.jobs.worker import MetafieldJobWorker
from multilang.services.quota_ledger import QuotaLedger
from multilang.services.subscription_tracker import SubscriptionStateTracker

_oauth_client: Optional[HaravanOAuthClient] = None
_api_client: Optional[HaravanAPIClient] = None
_manager: Optional[TokenLifecycleManager] = None
_tracker: Optional[SubscriptionStateTracker] = None
_ledger: Optional[QuotaLedger] = None
_queue: Optional[JobDispatchQueue] = None
_worker: Optional[MetafieldJobWorker] = None


def get_store() -> CredentialStore:
    return get_credential_store()


def get_oauth_client() -> HaravanOAuthClient:
    global _oauth_client
    if _oauth_client is None:
        _oauth_client = HaravanOAuthClient(get_settings().haravan)
    return _oauth_client


def get_api_client() -> HaravanAPIClient:
    global _api_client
    if _api_client is None:
        _api_client = HaravanAPIClient(base_url=get_settings().haravan.api_base_url)
    return _api_client


def get_token_lifecycle_manager() -> TokenLifecycleManager:
    global _manager
    if _manager is None:
        settings = get_settings()
        _manager = TokenLifecycleManager(
            store=get_store(),
            oauth_client=get_oauth_client(),
            identity_decoder=IdentityTokenDecoder(
                client_id=settings.haravan.client_id,
                jwks_url=settings.haravan.jwks_url,
            ),
            quota_config=settings.quota,
            frontend_url=settings.haravan.frontend_url,
        )
    return _manager


def get_subscription_tracker() -> SubscriptionStateTracker:
    global _tracker
    if _tracker is None:
        _tracker = SubscriptionStateTracker(
            store=get_store(),
            config=get_settings().haravan,
            oauth_client=get_oauth_client(),
        )
    return _tracker


def get_quota_ledger() -> QuotaLedger:
    global _ledger
    if _ledger is None:
        _ledger = QuotaLedger(get_store(), get_settings().quota)
    return _ledger


def get_job_queue() -> JobDispatchQueue:
    global _queue
    if _queue is None:
        _queue = JobDispatchQueue(get_store(), max_attempts=get_settings().worker.job_max_attempts)
    return _queue


def get_job_worker() -> MetafieldJobWorker:
    global _worker
    if _worker is None:
        _worker = MetafieldJobWorker(
            queue=get_job_queue(),
            store=get_store(),
            api_client=get_api_client(),
            ledger=get_quota_ledger(),
            operation_delay_ms=get_settings().worker.job_operation_delay_ms,
        )
    return _worker
