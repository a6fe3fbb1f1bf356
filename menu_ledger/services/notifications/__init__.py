"""
Notification Channel Factory

Returns the Mock or Redis notification channel based on ENV_MODE.

Version: 1.0.0
"""

import logging
from functools import lru_cache

from menu_ledger.core.config import get_settings
from menu_ledger.services.notifications.base import (
    BaseNotificationChannel,
    NotificationResult,
)
from menu_ledger.services.notifications.mock import MockNotificationChannel
from menu_ledger.services.notifications.redis import RedisNotificationChannel

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_channel() -> BaseNotificationChannel:
    """Get the configured notification channel."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Channel: Using MockNotificationChannel (development mode)")
        return MockNotificationChannel()
    else:
        logger.info(f"Notification Channel: Using RedisNotificationChannel ({settings.env_mode.value} mode)")
        return RedisNotificationChannel()


def reset_notification_channel() -> None:
    """Clear the cached channel instance."""
    get_notification_channel.cache_clear()


__all__ = [
    "get_notification_channel",
    "reset_notification_channel",
    "BaseNotificationChannel",
    "NotificationResult",
]
