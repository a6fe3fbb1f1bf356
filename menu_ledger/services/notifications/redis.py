"""
Redis Notification Channel

Production implementation on Redis pub/sub. Events are JSON-encoded; the
realtime gateway subscribed to the channel forwards them to dashboards and
guest menus.

Version: 1.0.0
"""

import json
import logging
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from menu_ledger.core.config import get_settings
from menu_ledger.services.notifications.base import (
    BaseNotificationChannel,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class RedisNotificationChannel(BaseNotificationChannel):
    """Notification channel using Redis PUBLISH."""

    def __init__(self, redis_url: Optional[str] = None, prefix: Optional[str] = None):
        settings = get_settings()
        self.prefix = prefix if prefix is not None else settings.notification_channel_prefix
        self.client = aioredis.from_url(
            redis_url or settings.redis_url,
            socket_timeout=2,
            decode_responses=True,
        )
        logger.info("RedisNotificationChannel initialized")

    @property
    def provider_name(self) -> str:
        return "redis"

    def _qualified(self, channel: str) -> str:
        return f"{self.prefix}:{channel}" if self.prefix else channel

    async def publish(self, channel: str, event: dict[str, Any]) -> NotificationResult:
        name = self._qualified(channel)
        try:
            receivers = await self.client.publish(name, json.dumps(event, default=str))
            logger.debug(f"Published {event.get('type')} on {name} to {receivers} subscribers")
            return NotificationResult(success=True, channel=name, receivers=receivers, provider="redis")
        except RedisError as e:
            logger.error(f"Redis publish failed on {name}: {e}")
            return NotificationResult(
                success=False,
                channel=name,
                error_message=str(e),
                provider="redis",
            )

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
