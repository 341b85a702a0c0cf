from throttlekit.adapters.store.base import AbstractStore
from throttlekit.adapters.store.in_memory import InMemoryTTLStore
from throttlekit.adapters.store.redis_store import RedisStore

__all__ = ["AbstractStore", "InMemoryTTLStore", "RedisStore"]
