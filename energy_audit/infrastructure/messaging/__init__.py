# Messaging Infrastructure
from .realtime_publisher import SYSTEM_ROOM, RedisRealtimePublisher

__all__ = [
    "SYSTEM_ROOM",
    "RedisRealtimePublisher",
]
