"""
Nightly credential refresh sweep.

Walks every stored tenant credential and refreshes the access token of
tenants that are still entitled to one, so tenants who do not open the
app for days still have a working token for background jobs.

FLOW:
1. Take the in-process single-flight flag, then the cross-instance lease
2. Enumerate haravan:multilanguage:app_install:* keys
3. For each tenant, sequentially:
   - skip missing records, unactive/cancelled tenants, lapsed subscriptions
     and records without a refresh token
   - otherwise exchange the refresh token
4. Fixed delay between tenants regardless of outcome (upstream rate limit)
5. Release lease and flag

CONSTRAINTS:
- At most one sweep at a time per process (flag) and across instances (lease)
- One tenant's failure never aborts the sweep

Usage:
    python -m multilang.workers.refresh_sweep

Runs either inside the API process (daily loop started from the app
lifespan) or as a standalone cron job.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from multilang.credentials.lifecycle import TokenLifecycleManager
from multilang.credentials.models import (
    INACTIVE_STATUSES,
    KEY_PREFIX,
    credential_key_pattern,
    tenant_id_from_key,
)
from multilang.credentials.store import CredentialStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SWEEP_LEASE_KEY = f"{KEY_PREFIX}:locks:refresh_sweep"

# Upper bound for one sweep; the lease expires on its own if a process dies mid-run
SWEEP_LEASE_TTL_SECONDS = 6 * 60 * 60


@dataclass
class SweepStats:
    """Track sweep run statistics."""

    tenants_scanned: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped_missing: int = 0
    skipped_inactive: int = 0
    skipped_lapsed: int = 0
    skipped_no_refresh_token: int = 0
    skipped_already_running: bool = False
    skipped_lease_held: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "tenants_scanned": self.tenants_scanned,
            "refreshed": self.refreshed,
            "failed": self.failed,
            "skipped_missing": self.skipped_missing,
            "skipped_inactive": self.skipped_inactive,
            "skipped_lapsed": self.skipped_lapsed,
            "skipped_no_refresh_token": self.skipped_no_refresh_token,
            "skipped_already_running": self.skipped_already_running,
            "skipped_lease_held": self.skipped_lease_held,
            "duration_seconds": round(duration, 2),
        }


class ScheduledRefreshSweep:
    """Refreshes every eligible tenant credential, one tenant at a time."""

    def __init__(
        self,
        manager: TokenLifecycleManager,
        store: CredentialStore,
        delay_ms: int = 500,
        lease_ttl_seconds: int = SWEEP_LEASE_TTL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.manager = manager
        self.store = store
        self.delay_ms = delay_ms
        self.lease_ttl_seconds = lease_ttl_seconds
        self._sleep = sleep
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> SweepStats:
        stats = SweepStats()

        if self._running:
            logger.warning("Refresh sweep already running, skipping")
            stats.skipped_already_running = True
            return stats

        self._running = True
        lease_token: Optional[str] = None
        try:
            lease_token = self.store.acquire_lease(SWEEP_LEASE_KEY, self.lease_ttl_seconds)
            if lease_token is None:
                logger.warning("Refresh sweep lease held by another instance, skipping")
                stats.skipped_lease_held = True
                return stats

            keys = self.store.scan_keys(credential_key_pattern())
            logger.info("Refresh sweep started", extra={"tenant_count": len(keys)})

            for index, key in enumerate(keys):
                if index > 0 and self.delay_ms:
                    await self._sleep(self.delay_ms / 1000)
                stats.tenants_scanned += 1
                await self._process(tenant_id_from_key(key), stats)

            logger.info("Refresh sweep completed", extra=stats.to_dict())
            return stats
        finally:
            if lease_token is not None:
                try:
                    self.store.release_lease(SWEEP_LEASE_KEY, lease_token)
                except Exception:
                    logger.exception("Failed to release refresh sweep lease")
            self._running = False

    async def _process(self, tenant_id: str, stats: SweepStats) -> None:
        try:
            credential = self.manager.load(tenant_id)
            if credential is None:
                stats.skipped_missing += 1
                return

            if credential.status in INACTIVE_STATUSES:
                stats.skipped_inactive += 1
                logger.info(
                    "sweep.skipped_inactive",
                    extra={"tenant_id": tenant_id, "status": credential.status},
                )
                return

            if credential.subscription_lapsed(self.manager.now()):
                stats.skipped_lapsed += 1
                logger.info(
                    "sweep.skipped_lapsed",
                    extra={
                        "tenant_id": tenant_id,
                        "subscription_expires_at": credential.subscription_expires_at,
                    },
                )
                return

            if not credential.refresh_token:
                stats.skipped_no_refresh_token += 1
                logger.warning("sweep.skipped_no_refresh_token", extra={"tenant_id": tenant_id})
                return

            result = await self.manager.refresh(tenant_id, credential.refresh_token)
            if result.succeeded:
                stats.refreshed += 1
            else:
                stats.failed += 1

        except Exception:
            stats.failed += 1
            logger.exception("sweep.tenant_error", extra={"tenant_id": tenant_id})


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """Seconds from ``now`` until the next ``hour``:00 in now's timezone."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_daily(sweep: ScheduledRefreshSweep, hour: int) -> None:
    """Run ``sweep`` every day at ``hour``:00 local time until cancelled."""
    while True:
        delay = seconds_until_next_run(datetime.now().astimezone(), hour)
        logger.info("Next refresh sweep scheduled", extra={"in_seconds": round(delay)})
        await asyncio.sleep(delay)
        try:
            await sweep.run()
        except Exception:
            logger.exception("Refresh sweep failed")


def build_refresh_sweep() -> ScheduledRefreshSweep:
    from multilang.api.dependencies import get_store, get_token_lifecycle_manager
    from multilang.config.settings import get_settings

    return ScheduledRefreshSweep(
        manager=get_token_lifecycle_manager(),
        store=get_store(),
        delay_ms=get_settings().worker.sweep_delay_ms,
    )


async def run_sweep_async() -> dict:
    stats = await build_refresh_sweep().run()
    return stats.to_dict()


def main():
    """Entry point for running the sweep from command line."""
    try:
        result = asyncio.run(run_sweep_async())
        logger.info("Refresh sweep finished", extra=result)
        sys.exit(0)
    except Exception as e:
        logger.error("Refresh sweep failed", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
