"""Workspace visibility and role checks shared by the services.

A workspace the principal has no role in is reported as *not found*
rather than *forbidden*, so callers cannot discover other users'
documents.  A visible workspace where the role is too low raises
:class:`PermissionDeniedError`.
"""

from __future__ import annotations

from docvault.models.auth import Principal, Role
from docvault.utils.errors import NotFoundError, PermissionDeniedError


def accessible_workspaces(principal: Principal, workspace_id: str | None = None) -> list[str]:
    """Return the workspace ids a read may cover.

    With *workspace_id* the scope narrows to that one workspace, which
    must be accessible.
    """
    if workspace_id is None:
        return principal.workspace_ids
    if principal.role_in(workspace_id) is None:
        raise NotFoundError(message="Workspace not found")
    return [workspace_id]


def require_visible(principal: Principal, workspace_id: str, what: str = "Document") -> Role:
    """Return the principal's role in *workspace_id*, or raise ``<what> not found``."""
    role = principal.role_in(workspace_id)
    if role is None:
        raise NotFoundError(message=f"{what} not found")
    return role


def require_role(
    principal: Principal,
    workspace_id: str,
    minimum: Role,
    what: str = "Document",
) -> Role:
    """Require at least *minimum* in *workspace_id*."""
    role = require_visible(principal, workspace_id, what)
    if not role.at_least(minimum):
        raise PermissionDeniedError(message="Insufficient permissions")
    return role


def choose_writable_workspace(principal: Principal, workspace_id: str | None = None) -> str:
    """Pick the workspace an upload or new resource goes into.

    Order: the explicit *workspace_id* (must be editor or owner), then the
    principal's default workspace if writable, then the first writable one.
    """
    if workspace_id is not None:
        require_role(principal, workspace_id, Role.EDITOR, what="Workspace")
        return workspace_id

    writable = principal.writable_workspace_ids()
    if principal.default_workspace_id in writable:
        return principal.default_workspace_id  # type: ignore[return-value]
    if writable:
        return writable[0]
    raise PermissionDeniedError(message="No writable workspace found")


def default_workspace(principal: Principal, workspace_id: str | None = None) -> str:
    """Pick a readable workspace: explicit, then default, then the first one."""
    if workspace_id is not None:
        require_visible(principal, workspace_id, what="Workspace")
        return workspace_id
    if principal.default_workspace_id and principal.role_in(principal.default_workspace_id):
        return principal.default_workspace_id
    if principal.workspace_ids:
        return principal.workspace_ids[0]
    raise NotFoundError(message="No workspace available")
