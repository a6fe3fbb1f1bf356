"""
Identity Provider Abstract Base Class

Resolves an authenticated actor's membership role inside an organization.
Authentication itself happens upstream; this interface only answers
"what is this user allowed to be here".

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from typing import Optional


class BaseIdentityProvider(ABC):
    """Abstract base class for identity/membership lookups."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def get_role(self, actor_id: str, organization_id: str) -> Optional[str]:
        """
        Role of `actor_id` in `organization_id` (owner, admin, manager, staff...).

        Returns None when the actor is not a member.
        """
        pass
