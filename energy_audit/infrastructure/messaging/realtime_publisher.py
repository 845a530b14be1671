"""
Realtime alert broadcasts over Redis pub/sub.

Each building has its own channel; alerts without a building go to the
system channel. Websocket gateways subscribe to these channels and fan
the events out to connected dashboards.
"""
import logging
from typing import Any, Dict

from redis.exceptions import RedisError

from ..cache.redis_cache import PubSubManager
from ...application.interfaces import RealtimePublisher
from ...domain.entities import utc_now

logger = logging.getLogger(__name__)

SYSTEM_ROOM = "system"


class RedisRealtimePublisher(RealtimePublisher):
    """
    Publishes alert events to per-building Redis channels.

    Delivery is fire-and-forget: a Redis outage is logged and never fails
    the alert operation that triggered the broadcast.
    """

    def __init__(self, pubsub: PubSubManager, channel_prefix: str = "energy_audit"):
        self._pubsub = pubsub
        self._channel_prefix = channel_prefix

    def channel_for(self, room: str) -> str:
        if room == SYSTEM_ROOM:
            return f"{self._channel_prefix}:{SYSTEM_ROOM}"
        return f"{self._channel_prefix}:building_{room}"

    async def emit_to_building(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        channel = self.channel_for(room)
        message = {
            'event': event,
            'room': room,
            'data': payload,
            'emitted_at': utc_now().isoformat(),
        }
        try:
            receivers = await self._pubsub.publish(channel, message)
            logger.debug(f"Published {event} to {channel} ({receivers} subscribers)")
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to publish {event} to {channel}: {e}")
