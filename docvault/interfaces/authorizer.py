"""Abstract base class for caller resolution.

User, workspace and API-key management live outside the DocVault core.
The core only needs a resolved :class:`~docvault.models.auth.Principal`
(user id plus role per accessible workspace), which every service
operation receives explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docvault.models.auth import Principal


# Concrete implementation: StaticAuthorizer (docvault/providers/auth/)
class IAuthorizer(ABC):
    """Contract for turning request credentials into a Principal."""

    @abstractmethod
    async def resolve(self, api_key: str) -> Principal:
        """Resolve an API key to its principal.

        Raises
        ------
        docvault.utils.errors.PermissionDeniedError
            If the key is unknown.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this authorizer."""
