# Cache Infrastructure
from .redis_cache import Cache, PubSubManager, RedisManager, health_check

__all__ = [
    "Cache",
    "PubSubManager",
    "RedisManager",
    "health_check",
]
