"""API-key authorizer backed by the YAML configuration.

Reads ``auth.api_keys`` from the loaded config::

    auth:
      api_keys:
        <key>:
          user_id: alice
          default_workspace: personal
          workspaces:
            personal: owner
            team: viewer
"""

from __future__ import annotations

import hmac
from typing import Any

import structlog

from docvault.interfaces.authorizer import IAuthorizer
from docvault.models.auth import Principal, Role
from docvault.utils.errors import ConfigurationError, PermissionDeniedError

logger = structlog.get_logger(logger_name=__name__)


class StaticAuthorizer(IAuthorizer):
    """Resolves API keys against a fixed key -> principal map."""

    def __init__(self, principals: dict[str, Principal]) -> None:
        self._principals = dict(principals)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> StaticAuthorizer:
        """Build the key map from the ``auth.api_keys`` section of *config*."""
        entries = (config.get("auth") or {}).get("api_keys") or {}
        if not isinstance(entries, dict):
            raise ConfigurationError("auth.api_keys must be a mapping of key -> principal")

        principals: dict[str, Principal] = {}
        for api_key, entry in entries.items():
            if not isinstance(entry, dict) or not entry.get("user_id"):
                raise ConfigurationError(f"auth.api_keys entry {str(api_key)[:6]}... needs a user_id")
            try:
                roles = {
                    str(ws): Role(str(role).lower())
                    for ws, role in (entry.get("workspaces") or {}).items()
                }
            except ValueError as exc:
                raise ConfigurationError(f"Unknown workspace role for user {entry['user_id']}: {exc}") from exc
            principals[str(api_key)] = Principal(
                user_id=str(entry["user_id"]),
                workspace_roles=roles,
                default_workspace_id=entry.get("default_workspace"),
            )

        logger.info("static_authorizer_loaded", key_count=len(principals))
        return cls(principals)

    async def resolve(self, api_key: str) -> Principal:
        if api_key:
            for known_key, principal in self._principals.items():
                if hmac.compare_digest(known_key.encode(), api_key.encode()):
                    return principal
        logger.warning("api_key_rejected")
        raise PermissionDeniedError(message="Invalid API key", provider_name=self.get_provider_name())

    def get_provider_name(self) -> str:
        return "static_api_keys"
