"""
Redis Pub/Sub publisher for live dashboard notifications
"""
import json
import logging
from typing import Any, Dict, Optional
import redis.asyncio as redis

logger = logging.getLogger(__name__)


def notification_channel(user_id: str) -> str:
    return f"notifications:{user_id}"


class RedisNotificationPublisher:
    """
    Publishes in-app notifications so connected dashboards receive them
    without polling. Channel format: notifications:{user_id}
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.redis: Optional[redis.Redis] = client

    async def connect(self):
        """Connect to Redis"""
        if self.redis is None:
            self.redis = redis.from_url(self.redis_url)
        await self.redis.ping()

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def publish(self, user_id: str, payload: Dict[str, Any]) -> int:
        """Publish a notification; returns the number of subscribers reached"""
        if self.redis is None:
            raise RuntimeError("Redis publisher is not connected")
        message = json.dumps(payload, default=str)
        return await self.redis.publish(notification_channel(user_id), message)
