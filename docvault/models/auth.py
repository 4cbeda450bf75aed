"""Caller identity as resolved by an :class:`IAuthorizer`."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Workspace membership role, ordered viewer < editor < owner."""

    VIEWER = "viewer"
    EDITOR = "editor"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: Role) -> bool:
        return self.rank >= other.rank


_ROLE_RANK = {Role.VIEWER: 0, Role.EDITOR: 1, Role.OWNER: 2}


class Principal(BaseModel):
    """The resolved caller: a user and their role in each workspace."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    workspace_roles: dict[str, Role] = Field(default_factory=dict)
    default_workspace_id: str | None = None

    @property
    def workspace_ids(self) -> list[str]:
        return list(self.workspace_roles)

    def role_in(self, workspace_id: str) -> Role | None:
        return self.workspace_roles.get(workspace_id)

    def writable_workspace_ids(self) -> list[str]:
        return [ws for ws, role in self.workspace_roles.items() if role.at_least(Role.EDITOR)]
