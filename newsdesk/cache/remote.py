"""
Redis-backed shared cache tier.

Every operation degrades to "absent" / no-op on transport or serialization
errors. The connection is opened lazily with short timeouts, and after a
failure the tier stays offline for a retry interval so an unreachable
server cannot stall request handling.
"""
import json
import logging
import re
import threading
import time
from typing import Any, Callable, Dict, Optional

import redis

from .core import CacheEntry, CacheTier

logger = logging.getLogger("cache.remote")

# Transport errors that mean "treat the tier as absent"
TIER_ERRORS = (redis.RedisError, OSError)

# Characters with meaning in a SCAN MATCH pattern
_GLOB_CHARS = re.compile(r"([\\*?\[\]])")


def escape_glob(value: str) -> str:
    return _GLOB_CHARS.sub(r"\\\1", value)


class RemoteCache(CacheTier):
    """
    Optional second cache tier shared between processes.

    Disabled entirely when ``redis_url`` is None.
    """

    def __init__(
        self,
        redis_url: Optional[str],
        namespace: str = "newsdesk:",
        connect_timeout: float = 1.0,
        command_timeout: float = 0.8,
        retry_seconds: float = 30.0,
        client: Optional[redis.Redis] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            redis_url: Connection string; None disables the tier
            namespace: Prefix applied to every key stored remotely
            connect_timeout: Socket connect timeout in seconds
            command_timeout: Per-command socket timeout in seconds
            retry_seconds: How long to stay offline after a failure
            client: Pre-built client (skips lazy construction)
            clock: Time source, injectable for tests
        """
        self._redis_url = redis_url
        self._namespace = namespace
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout
        self._retry_seconds = retry_seconds
        self._clock = clock
        self._client = client
        self._lock = threading.Lock()
        self._offline_until = 0.0
        self._connected = False
        self._errors = 0

    @property
    def is_enabled(self) -> bool:
        return self._client is not None or bool(self._redis_url)

    @property
    def is_available(self) -> bool:
        return self.is_enabled and self._clock() >= self._offline_until

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def _get_client(self) -> Optional[redis.Redis]:
        """Return a connected client, connecting on first use."""
        if not self.is_available:
            return None

        with self._lock:
            if self._client is None:
                try:
                    self._client = redis.Redis.from_url(
                        self._redis_url,
                        socket_connect_timeout=self._connect_timeout,
                        socket_timeout=self._command_timeout,
                        decode_responses=True,
                    )
                except ValueError as e:
                    raise redis.ConnectionError(f"Invalid REDIS_URL: {e}") from e
            client = self._client

        if not self._connected:
            client.ping()
            self._connected = True
            logger.info("Redis cache connected")
        return client

    def _mark_failed(self, operation: str, error: Exception) -> None:
        self._errors += 1
        self._connected = False
        self._offline_until = self._clock() + self._retry_seconds
        logger.warning(
            f"Redis {operation} failed, using local cache only for "
            f"{self._retry_seconds:.0f}s: {error}"
        )

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        try:
            client = self._get_client()
            if client is None:
                return None
            raw = client.get(self._key(key))
        except TIER_ERRORS as e:
            self._mark_failed("get", e)
            return None
        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            entry = CacheEntry(
                key=key,
                value=envelope["data"],
                stored_at=float(envelope["stored_at"]),
                ttl_seconds=int(envelope["ttl"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed remote entry {key}: {e}")
            return None

        if entry.is_expired(self._clock()):
            return None
        return entry

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        stored_at: Optional[float] = None,
    ) -> bool:
        # A value that cannot be serialized says nothing about the server
        try:
            payload = json.dumps({
                "data": value,
                "stored_at": self._clock() if stored_at is None else stored_at,
                "ttl": ttl_seconds,
            })
        except (TypeError, ValueError) as e:
            logger.warning(f"Not storing {key} remotely, value is not JSON serializable: {e}")
            return False

        try:
            client = self._get_client()
            if client is None:
                return False
            client.setex(self._key(key), ttl_seconds, payload)
            return True
        except TIER_ERRORS as e:
            self._mark_failed("set", e)
            return False

    def delete(self, key: str) -> bool:
        try:
            client = self._get_client()
            if client is None:
                return False
            return bool(client.delete(self._key(key)))
        except TIER_ERRORS as e:
            self._mark_failed("delete", e)
            return False

    def delete_prefix(self, prefix: str) -> int:
        try:
            client = self._get_client()
            if client is None:
                return 0
            keys = list(client.scan_iter(match=f"{escape_glob(self._key(prefix))}*"))
            if not keys:
                return 0
            deleted = client.delete(*keys)
            logger.info(f"Deleted {deleted} Redis keys with prefix '{prefix}'")
            return int(deleted)
        except TIER_ERRORS as e:
            self._mark_failed("delete_prefix", e)
            return 0

    def clear(self) -> int:
        """Remove every key in this cache's namespace."""
        return self.delete_prefix("")

    def ping(self) -> bool:
        try:
            client = self._get_client()
            return client is not None and bool(client.ping())
        except TIER_ERRORS as e:
            self._mark_failed("ping", e)
            return False

    def close(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            self._connected = False
        if client is not None:
            try:
                client.close()
            except TIER_ERRORS as e:
                logger.debug(f"Redis close warning: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.is_enabled,
            "available": self.is_available,
            "connected": self._connected,
            "errors": self._errors,
        }
