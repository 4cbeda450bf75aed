"""Tag vocabulary management and manual document tagging.

Tags are workspace scoped.  Viewers may read them; editors and owners
create, rename, delete and attach them; merging is reserved for owners
since it rewrites other users' associations.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from docvault.models.auth import Principal, Role
from docvault.models.tags import DocumentTagView, Tag, TagCategory, TagSource
from docvault.services.access import accessible_workspaces, choose_writable_workspace, require_role, require_visible
from docvault.utils.errors import InvalidRequestError, NotFoundError

if TYPE_CHECKING:
    from docvault.interfaces.metadata_store import IMetadataStore

logger = structlog.get_logger(logger_name=__name__)


def _parse_category(category: TagCategory | str | None) -> TagCategory | None:
    if category is None or category == "":
        return None
    parsed = TagCategory.parse(category)
    if parsed is None:
        raise InvalidRequestError(message=f"Unknown tag category: {category}")
    return parsed


class TagService:
    """Tag CRUD, merge, and document tag links on behalf of a principal."""

    def __init__(self, metadata_store: IMetadataStore) -> None:
        self._store = metadata_store

    async def list_tags(
        self,
        principal: Principal,
        workspace_id: str | None = None,
        category: TagCategory | str | None = None,
    ) -> list[Tag]:
        """Tags ordered by usage count descending, then name."""
        workspace_ids = accessible_workspaces(principal, workspace_id)
        if not workspace_ids:
            return []
        return await self._store.list_tags(workspace_ids, category=_parse_category(category))

    async def create_tag(
        self,
        principal: Principal,
        name: str,
        category: TagCategory | str | None = None,
        workspace_id: str | None = None,
    ) -> Tag:
        """Create a tag.

        Raises
        ------
        PermissionDeniedError
            If the caller cannot write to the workspace.
        ConflictError
            If the name already exists in the workspace.
        """
        name = (name or "").strip()
        if not name:
            raise InvalidRequestError(message="Tag name is required")
        target = choose_writable_workspace(principal, workspace_id)
        tag = await self._store.create_tag(
            Tag(
                id=str(uuid.uuid4()),
                workspace_id=target,
                name=name,
                category=_parse_category(category),
            )
        )
        logger.info("tag_created", tag_id=tag.id, workspace_id=target)
        return tag

    async def update_tag(
        self,
        principal: Principal,
        tag_id: str,
        name: str | None = None,
        category: TagCategory | str | None = None,
    ) -> Tag:
        tag = await self._writable_tag(principal, tag_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidRequestError(message="Tag name is required")
        updated = await self._store.update_tag(tag.id, name=name, category=_parse_category(category))
        logger.info("tag_updated", tag_id=tag.id)
        return updated

    async def delete_tag(self, principal: Principal, tag_id: str) -> None:
        tag = await self._writable_tag(principal, tag_id)
        await self._store.delete_tag(tag.id)
        logger.info("tag_deleted", tag_id=tag.id, usage_count=tag.usage_count)

    async def merge_tags(self, principal: Principal, target_id: str, source_ids: list[str]) -> Tag:
        """Fold *source_ids* into *target_id*; owner only, same workspace."""
        source_ids = [s for s in dict.fromkeys(source_ids) if s != target_id]
        if not source_ids:
            raise InvalidRequestError(message="At least one source tag is required")

        target = await self._store.get_tag(target_id)
        if target is None:
            raise NotFoundError(message="Tag not found")
        require_role(principal, target.workspace_id, Role.OWNER, what="Tag")

        for source_id in source_ids:
            source = await self._store.get_tag(source_id)
            if source is None or principal.role_in(source.workspace_id) is None:
                raise NotFoundError(message="Tag not found")
            if source.workspace_id != target.workspace_id:
                raise InvalidRequestError(message="Tags must belong to the same workspace")

        merged = await self._store.merge_tags(target.id, source_ids)
        logger.info(
            "tags_merged",
            target_id=target.id,
            source_count=len(source_ids),
            usage_count=merged.usage_count,
        )
        return merged

    async def add_tags_to_document(
        self,
        principal: Principal,
        document_id: str,
        tag_ids: list[str],
    ) -> list[DocumentTagView]:
        """Attach tags as ``user_added``; existing links are left as they are."""
        workspace_id = await self._writable_document_workspace(principal, document_id)
        added = 0
        for tag_id in dict.fromkeys(tag_ids):
            tag = await self._store.get_tag(tag_id)
            if tag is None or tag.workspace_id != workspace_id:
                raise NotFoundError(message="Tag not found")
            if await self._store.associate_tag(document_id, tag.id, TagSource.USER_ADDED):
                added += 1
        logger.info("document_tags_added", document_id=document_id, added=added)
        return await self._store.get_document_tags(document_id)

    async def remove_tags_from_document(
        self,
        principal: Principal,
        document_id: str,
        tag_ids: list[str],
    ) -> list[DocumentTagView]:
        await self._writable_document_workspace(principal, document_id)
        removed = 0
        for tag_id in dict.fromkeys(tag_ids):
            if await self._store.dissociate_tag(document_id, tag_id):
                removed += 1
        logger.info("document_tags_removed", document_id=document_id, removed=removed)
        return await self._store.get_document_tags(document_id)

    async def _writable_tag(self, principal: Principal, tag_id: str) -> Tag:
        tag = await self._store.get_tag(tag_id)
        if tag is None:
            raise NotFoundError(message="Tag not found")
        require_role(principal, tag.workspace_id, Role.EDITOR, what="Tag")
        return tag

    async def _writable_document_workspace(self, principal: Principal, document_id: str) -> str:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(message="Document not found")
        require_visible(principal, document.workspace_id)
        require_role(principal, document.workspace_id, Role.EDITOR)
        return document.workspace_id
