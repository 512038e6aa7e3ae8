"""
Environment-driven configuration for the multilanguage backend.

All values come from environment variables. Each concern has its own
dataclass with a ``from_env()`` constructor so tests can build configs
directly without touching the process environment.

Configuration (environment variables):
- REDIS_URL:                 Redis connection URL (default: "redis://redis:6379/0")
- FRONTEND_URL:              Where tenants land after login/install
- HRV_*:                     Haravan OAuth application settings
- QUOTA_TRIAL_LIMIT:         Chargeable operations allowed on trial (default: "100")
- QUOTA_PAID_LIMIT:          Chargeable operations allowed when active (default: "10000")
- REFRESH_SWEEP_HOUR:        Local hour for the nightly sweep (default: "3")
- REFRESH_SWEEP_DELAY_MS:    Delay between tenants during the sweep (default: "500")
- JOB_OPERATION_DELAY_MS:    Delay between batch operations (default: "500")
- JOB_MAX_ATTEMPTS:          Attempts before a job is failed (default: "3")
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DEFAULT_REDIS_URL = "redis://redis:6379/0"
DEFAULT_API_BASE_URL = "https://apis.haravan.com"


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class HaravanConfig:
    """Haravan OAuth application settings."""

    client_id: str = ""
    client_secret: str = ""
    url_authorize: str = ""
    url_connect_token: str = ""
    install_callback_url: str = ""
    scope_install: str = ""
    grant_type_install: str = "authorization_code"
    grant_type_refresh: str = "refresh_token"
    response_type: str = "code id_token"
    nonce: str = ""
    webhook_secret: str = ""
    frontend_url: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    jwks_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "HaravanConfig":
        return cls(
            client_id=os.getenv("HRV_CLIENT_ID", ""),
            client_secret=os.getenv("HRV_CLIENT_SECRET", ""),
            url_authorize=os.getenv("HRV_URL_AUTHORIZE", ""),
            url_connect_token=os.getenv("HRV_URL_CONNECT_TOKEN", ""),
            install_callback_url=os.getenv("HRV_INSTALL_CALLBACK_URL", ""),
            scope_install=os.getenv("HRV_SCOPE_INSTALL", ""),
            grant_type_install=os.getenv("HRV_GRANT_TYPE_INSTALL", "authorization_code"),
            grant_type_refresh=os.getenv("HRV_GRANT_TYPE_REFRESH", "refresh_token"),
            response_type=os.getenv("HRV_RESPONSE_TYPE", "code id_token"),
            nonce=os.getenv("HRV_NONCE", ""),
            webhook_secret=os.getenv("HRV_WEBHOOK_SECRET", ""),
            frontend_url=os.getenv("FRONTEND_URL", ""),
            api_base_url=os.getenv("HRV_API_BASE_URL", DEFAULT_API_BASE_URL),
            jwks_url=os.getenv("HRV_JWKS_URL") or None,
        )


@dataclass(frozen=True)
class QuotaConfig:
    """Per-tier chargeable operation allotments."""

    trial_limit: int = 100
    paid_limit: int = 10000

    @classmethod
    def from_env(cls) -> "QuotaConfig":
        return cls(
            trial_limit=_get_int("QUOTA_TRIAL_LIMIT", 100),
            paid_limit=_get_int("QUOTA_PAID_LIMIT", 10000),
        )


@dataclass(frozen=True)
class WorkerConfig:
    """Background sweep and job worker settings."""

    sweep_hour: int = 3
    sweep_delay_ms: int = 500
    job_operation_delay_ms: int = 500
    job_max_attempts: int = 3
    background_workers_enabled: bool = True

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        return cls(
            sweep_hour=_get_int("REFRESH_SWEEP_HOUR", 3),
            sweep_delay_ms=_get_int("REFRESH_SWEEP_DELAY_MS", 500),
            job_operation_delay_ms=_get_int("JOB_OPERATION_DELAY_MS", 500),
            job_max_attempts=_get_int("JOB_MAX_ATTEMPTS", 3),
            background_workers_enabled=_get_bool("BACKGROUND_WORKERS_ENABLED", True),
        )


@dataclass(frozen=True)
class Settings:
    redis_url: str
    haravan: HaravanConfig
    quota: QuotaConfig
    worker: WorkerConfig

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            redis_url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
            haravan=HaravanConfig.from_env(),
            quota=QuotaConfig.from_env(),
            worker=WorkerConfig.from_env(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment."""
    return Settings.from_env()
