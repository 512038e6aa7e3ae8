"""
Redis-backed key-value store for tenant credentials, subscriptions and quotas.

Provides:
- JSON get/set with optional per-key TTL
- Existence check, delete and pattern scan
- Optimistic read-modify-write (WATCH/MULTI) so concurrent writers of the
  same record never silently discard each other's update
- Atomic counters (INCRBY) for quota accounting
- Short leases (SET NX EX) used as a cross-instance single-flight lock
- A FIFO list used by the job queue for pending job ids

Unlike the embed token store, failures here are NOT swallowed: a missing
credential and an unreachable store must stay distinguishable, so Redis
errors surface as StoreUnavailableError.
"""

import json
import logging
import uuid
from typing import Any, Callable, Optional

import redis

from multilang.config.settings import get_settings
from multilang.platform.errors import ConcurrentUpdateError, StoreUnavailableError

logger = logging.getLogger(__name__)

# Optimistic update attempts before giving up
MAX_UPDATE_ATTEMPTS = 5

SCAN_BATCH_SIZE = 500

Mutator = Callable[[Optional[dict]], Optional[dict]]


class CredentialStore:
    """
    Narrow get/set/delete/exists/scan contract over Redis.

    Values are structured records, serialized to JSON on write and
    deserialized on read.
    """

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    # ------------------------------------------------------------------
    # Basic contract
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._redis.get(key)
        except redis.RedisError as exc:
            self._raise_unavailable("get", key, exc)
        return _loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        payload = json.dumps(value)
        try:
            if ttl_seconds:
                self._redis.set(key, payload, ex=int(ttl_seconds))
            else:
                self._redis.set(key, payload)
        except redis.RedisError as exc:
            self._raise_unavailable("set", key, exc)

    def delete(self, key: str) -> int:
        try:
            return int(self._redis.delete(key) or 0)
        except redis.RedisError as exc:
            self._raise_unavailable("delete", key, exc)

    def exists(self, key: str) -> bool:
        try:
            return bool(self._redis.exists(key))
        except redis.RedisError as exc:
            self._raise_unavailable("exists", key, exc)

    def scan_keys(self, pattern: str) -> list[str]:
        """
        Return all keys matching ``pattern``.

        Uses SCAN rather than KEYS so large keyspaces do not block Redis.
        """
        try:
            keys = [_decode(k) for k in self._redis.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)]
        except redis.RedisError as exc:
            self._raise_unavailable("scan", pattern, exc)
        return sorted(set(keys))

    # ------------------------------------------------------------------
    # Atomic helpers
    # ------------------------------------------------------------------

    def update(self, key: str, mutator: Mutator, ttl_seconds: Optional[int] = None) -> Optional[dict]:
        """
        Read-modify-write ``key`` under optimistic concurrency control.

        ``mutator`` receives the current record (or None) and returns the
        record to write, or None to leave the key untouched. It may be
        called more than once when another writer wins the race, so it
        must not have side effects.

        Returns:
            The written record, or the unchanged current record when the
            mutator declined to write.

        Raises:
            ConcurrentUpdateError: If every attempt lost the race.
        """
        try:
            with self._redis.pipeline() as pipe:
                for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                    try:
                        pipe.watch(key)
                        current = _loads(pipe.get(key))
                        updated = mutator(current)
                        if updated is None:
                            pipe.unwatch()
                            return current

                        pipe.multi()
                        if ttl_seconds:
                            pipe.set(key, json.dumps(updated), ex=int(ttl_seconds))
                        else:
                            pipe.set(key, json.dumps(updated))
                        pipe.execute()
                        return updated
                    except redis.WatchError:
                        logger.info(
                            "Concurrent write detected, retrying update",
                            extra={"key": key, "attempt": attempt},
                        )
                        continue
        except redis.RedisError as exc:
            self._raise_unavailable("update", key, exc)

        logger.error(
            "Optimistic update exhausted retries",
            extra={"key": key, "attempts": MAX_UPDATE_ATTEMPTS},
        )
        raise ConcurrentUpdateError(key)

    def get_int(self, key: str) -> int:
        try:
            raw = self._redis.get(key)
        except redis.RedisError as exc:
            self._raise_unavailable("get", key, exc)
        if raw is None:
            return 0
        return int(_decode(raw))

    def incr(self, key: str, amount: int = 1) -> int:
        try:
            return int(self._redis.incrby(key, amount))
        except redis.RedisError as exc:
            self._raise_unavailable("incr", key, exc)

    def acquire_lease(self, key: str, ttl_seconds: int) -> Optional[str]:
        """
        Try to take an exclusive lease on ``key``.

        Returns the lease token when acquired, None when someone else holds it.
        """
        token = uuid.uuid4().hex
        try:
            acquired = self._redis.set(key, token, nx=True, ex=int(ttl_seconds))
        except redis.RedisError as exc:
            self._raise_unavailable("acquire_lease", key, exc)
        return token if acquired else None

    def release_lease(self, key: str, token: str) -> bool:
        """Release a lease only if it is still held by ``token``."""
        try:
            with self._redis.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    holder = pipe.get(key)
                    if holder is None or _decode(holder) != token:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    return False
        except redis.RedisError as exc:
            self._raise_unavailable("release_lease", key, exc)

    def push(self, list_key: str, value: str) -> None:
        try:
            self._redis.rpush(list_key, value)
        except redis.RedisError as exc:
            self._raise_unavailable("push", list_key, exc)

    def pop(self, list_key: str) -> Optional[str]:
        try:
            raw = self._redis.lpop(list_key)
        except redis.RedisError as exc:
            self._raise_unavailable("pop", list_key, exc)
        return _decode(raw) if raw is not None else None

    def length(self, list_key: str) -> int:
        try:
            return int(self._redis.llen(list_key))
        except redis.RedisError as exc:
            self._raise_unavailable("length", list_key, exc)

    # ------------------------------------------------------------------

    def _raise_unavailable(self, operation: str, key: str, exc: Exception):
        logger.error(
            "Credential store operation failed",
            extra={
                "operation": operation,
                "key": key,
                "error_type": type(exc).__name__,
            },
        )
        raise StoreUnavailableError() from exc


def _decode(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _loads(raw: Any) -> Optional[Any]:
    if raw is None:
        return None
    return json.loads(_decode(raw))


# --------------------------------------------------------------------------
# Module-level singleton
# --------------------------------------------------------------------------

_store: Optional[CredentialStore] = None


def get_credential_store() -> CredentialStore:
    """
    Factory function returning a module-level CredentialStore singleton.

    Connects to ``Settings.redis_url`` (REDIS_URL).
    The connection is opened lazily by redis-py on first command.
    """
    global _store
    if _store is None:
        client = redis.Redis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=5,
        )
        logger.info(
            "CredentialStore configured",
            extra={"redis_host": client.connection_pool.connection_kwargs.get("host")},
        )
        _store = CredentialStore(client)
    return _store
