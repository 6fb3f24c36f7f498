"""Redis-backed key-value store (shared log across processes on one host)."""
import logging
from typing import Optional

import redis

from notify_sync.domain.common.errors import StorageError

logger = logging.getLogger(__name__)


class RedisKeyValueStore:
    """Sync redis client: persistence runs inline with log mutations, like browser storage."""

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None):
        self._redis = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: Optional[int] = None) -> "RedisKeyValueStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        try:
            value = self._redis.get(key)
        except redis.RedisError as e:
            raise StorageError(key, str(e)) from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        try:
            if self._ttl:
                self._redis.setex(key, self._ttl, value)
            else:
                self._redis.set(key, value)
        except redis.RedisError as e:
            raise StorageError(key, str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(key)
        except redis.RedisError as e:
            raise StorageError(key, str(e)) from e

    def close(self) -> None:
        try:
            self._redis.close()
        except redis.RedisError as e:
            logger.warning("Redis close failed: %s", e)
