"""Key-value stores for persisted notification logs."""
from notify_sync.domain.common.errors import ConfigError
from notify_sync.infra.storage.kv_store import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore


def build_store(backend: str, storage_dir: str = "", redis_url: str = "") -> KeyValueStore:
    """Select a store by settings.storage_backend."""
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "file":
        return JsonFileKeyValueStore(storage_dir)
    if backend == "redis":
        from notify_sync.infra.storage.redis_store import RedisKeyValueStore
        return RedisKeyValueStore.from_url(redis_url)
    raise ConfigError(f"Unknown storage backend: {backend}")


__all__ = ["KeyValueStore", "MemoryKeyValueStore", "JsonFileKeyValueStore", "build_store"]
