"""RedisStorage implementation using plain Redis strings.

Fails loudly on connection errors; the cache decides whether a failure is
fatal (hydrate) or best-effort (persist).
"""

from __future__ import annotations

import logging

import redis

logger = logging.getLogger(__name__)

# Max keys per DEL call when purging.
DELETE_BATCH_SIZE = 100


class RedisStorage:
    """Redis-backed StorageBackend with chunked bulk deletes."""

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        namespace: str = "vcp",
        client: redis.Redis | None = None,
    ) -> None:
        """Initialize Redis storage.

        Args:
            url: Redis connection URL.
            namespace: Prefix applied to every key.
            client: Pre-built client (tests pass a fake here).
        """
        self._url = url
        self._namespace = namespace
        self._client = client
        self._connected: bool | None = None  # None = not yet checked

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)

        if self._connected is None:
            try:
                self._client.ping()
                self._connected = True
                logger.info(f"[RedisStorage] Connected to {self._url}")
            except redis.exceptions.ConnectionError:
                self._connected = False
                raise

        return self._client

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def get_item(self, key: str) -> str | None:
        value = self._get_client().get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set_item(self, key: str, value: str) -> None:
        self._get_client().set(self._key(key), value)

    def remove_item(self, key: str) -> None:
        self._get_client().delete(self._key(key))

    def purge(self, prefix: str = "") -> int:
        """Delete every key under *prefix*, at most DELETE_BATCH_SIZE per call.

        Returns:
            Number of keys deleted.
        """
        client = self._get_client()
        pattern = f"{self._key(prefix)}*"
        batch: list[str] = []
        deleted = 0
        for key in client.scan_iter(match=pattern, count=DELETE_BATCH_SIZE):
            batch.append(key)
            if len(batch) >= DELETE_BATCH_SIZE:
                deleted += client.delete(*batch)
                batch = []
        if batch:
            deleted += client.delete(*batch)
        logger.info(f"[RedisStorage] Purged {deleted} keys matching '{pattern}'")
        return deleted

    def is_available(self) -> bool:
        try:
            self._get_client()
            return True
        except redis.exceptions.ConnectionError:
            return False
