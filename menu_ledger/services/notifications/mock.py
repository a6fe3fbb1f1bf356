"""
Mock Notification Channel

Records published events in memory and logs them. Nothing leaves the process.

Version: 1.0.0
"""

import logging
import random
from typing import Any

from menu_ledger.services.notifications.base import (
    BaseNotificationChannel,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class MockNotificationChannel(BaseNotificationChannel):
    """Mock notification channel for development."""

    def __init__(self, failure_rate: float = 0.0):
        self.failure_rate = failure_rate
        self.published: list[tuple[str, dict[str, Any]]] = []
        logger.info(f"MockNotificationChannel initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def events(self, event_type: str) -> list[dict[str, Any]]:
        """Published events of one type, oldest first."""
        return [e for _, e in self.published if e.get("type") == event_type]

    async def publish(self, channel: str, event: dict[str, Any]) -> NotificationResult:
        if random.random() < self.failure_rate:
            logger.warning(f"Mock publish failed (simulated) on {channel}")
            return NotificationResult(
                success=False,
                channel=channel,
                error_message="Simulated publish failure",
                provider="mock",
            )

        self.published.append((channel, event))
        logger.info(f"Mock event on {channel}: {event.get('type')}")
        return NotificationResult(success=True, channel=channel, receivers=0, provider="mock")

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
