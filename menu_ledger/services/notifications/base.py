"""
Notification Channel Abstract Base Class

Fire-and-forget realtime events emitted after ledger writes
(price.changed, menu.published). Delivery is best effort: a failed publish
is reported in the result and logged, never raised to the caller.

Supports both Mock (development) and Redis (production) implementations.

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class NotificationResult:
    """Result from publishing an event."""
    success: bool
    channel: str
    receivers: int = 0
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseNotificationChannel(ABC):
    """Abstract base class for realtime notification channels."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(self, channel: str, event: dict[str, Any]) -> NotificationResult:
        """Publish one event on `channel`. Must not raise."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check channel connectivity."""
        pass
