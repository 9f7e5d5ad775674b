# library_sync/services/catalog_service.py
"""
Catalog repository for synced file resources.

One Resource exists per external file identity. On every observation the sync
calls upsert_file_resource(), which creates the row the first time and
otherwise refreshes the title and applies the safe merge to the tag set:

    final = fresh path tags + (currently attached parentless attribute tags)

Hierarchy tags from a previous folder location are dropped, so a moved file
only shows up under its new path, while facets an admin added by hand (or the
crawler can no longer rediscover) stay attached.

Usage:
    from library_sync.services.catalog_service import catalog_service

    resource, action = await catalog_service.upsert_file_resource(
        session, external_id=item.id, name=item.name, mime_type=item.mime_type,
        size=item.size, hierarchy_tag_ids=tag_ids,
    )
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import (
    HIERARCHY_GROUPS,
    Resource,
    ResourceSource,
    ResourceStatus,
    Tag,
)

logger = logging.getLogger("library_sync.catalog")

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_UNCHANGED = "unchanged"


def _dedupe(ids: Iterable[UUID]) -> List[UUID]:
    seen = set()
    ordered = []
    for tag_id in ids:
        if tag_id is None or tag_id in seen:
            continue
        seen.add(tag_id)
        ordered.append(tag_id)
    return ordered


def is_preserved_tag(tag: Tag) -> bool:
    """
    Tags kept across a resync: parentless attribute-style tags.

    Parentless hierarchy roots (LEVEL) are part of the folder path and are
    replaced like any other hierarchy tag.
    """
    return tag.parent_id is None and tag.group not in HIERARCHY_GROUPS


class CatalogService:
    """Find-by-external-id and upsert with safe tag merge."""

    async def find_by_external_id(self, session: AsyncSession, external_id: str) -> Optional[Resource]:
        """Match either the cataloged file id or the id it was copied from."""
        result = await session.execute(
            select(Resource)
            .where(
                or_(
                    Resource.external_file_id == external_id,
                    Resource.original_external_file_id == external_id,
                )
            )
            .limit(1)
        )
        return result.scalars().first()

    async def _load_tags(self, session: AsyncSession, tag_ids: Sequence[UUID]) -> List[Tag]:
        if not tag_ids:
            return []
        result = await session.execute(select(Tag).where(Tag.id.in_(list(tag_ids))))
        by_id = {tag.id: tag for tag in result.scalars().all()}
        missing = [str(tag_id) for tag_id in tag_ids if tag_id not in by_id]
        if missing:
            logger.warning(f"Ignoring unknown tag ids: {', '.join(missing)}")
        return [by_id[tag_id] for tag_id in tag_ids if tag_id in by_id]

    async def upsert_file_resource(
        self,
        session: AsyncSession,
        external_id: str,
        name: str,
        mime_type: Optional[str],
        size: Optional[int],
        hierarchy_tag_ids: Sequence[UUID],
        original_external_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tuple[Resource, str]:
        """
        Create or refresh the resource for one remote file.

        Args:
            session: Database session (not committed here)
            external_id: Id of the cataloged file (the copy, in copy mode)
            name: File name, used as the title
            mime_type: MIME type from the remote store
            size: Size in bytes, if known
            hierarchy_tag_ids: Tag ids derived from the current folder path
            original_external_id: Source file id when the file was copied
            description: Optional description for new rows

        Returns:
            Tuple of (resource, action) where action is "created", "updated"
            or "unchanged"
        """
        fresh_ids = _dedupe(hierarchy_tag_ids)

        existing = await self.find_by_external_id(session, external_id)
        if existing is None and original_external_id:
            existing = await self.find_by_external_id(session, original_external_id)

        if existing is None:
            try:
                async with session.begin_nested():
                    resource = Resource(
                        title=name,
                        description=description,
                        external_file_id=external_id,
                        original_external_file_id=original_external_id,
                        mime_type=mime_type,
                        file_size=size,
                        status=ResourceStatus.APPROVED.value,
                        source=ResourceSource.SYSTEM.value,
                        uploader_id=settings.system_uploader_id,
                        tags=await self._load_tags(session, fresh_ids),
                    )
                    session.add(resource)
                    await session.flush()
                logger.debug(f"Created resource '{name}' ({external_id})")
                return resource, ACTION_CREATED
            except IntegrityError:
                existing = await self.find_by_external_id(session, original_external_id or external_id)
                if existing is None:
                    raise
                logger.debug(f"Resource {external_id} created concurrently, merging")

        return await self._merge(session, existing, name, mime_type, size, fresh_ids)

    async def _merge(
        self,
        session: AsyncSession,
        resource: Resource,
        name: str,
        mime_type: Optional[str],
        size: Optional[int],
        fresh_ids: List[UUID],
    ) -> Tuple[Resource, str]:
        preserved = [tag.id for tag in resource.tags if is_preserved_tag(tag)]
        final_ids = _dedupe(list(fresh_ids) + preserved)

        current_ids = {tag.id for tag in resource.tags}
        changed = (
            resource.title != name
            or (mime_type is not None and resource.mime_type != mime_type)
            or (size is not None and resource.file_size != size)
            or current_ids != set(final_ids)
        )
        if not changed:
            return resource, ACTION_UNCHANGED

        final_tags = await self._load_tags(session, final_ids)
        async with session.begin_nested():
            resource.title = name
            if mime_type is not None:
                resource.mime_type = mime_type
            if size is not None:
                resource.file_size = size
            resource.tags = final_tags
            await session.flush()

        logger.debug(
            f"Updated resource '{name}' ({resource.external_file_id}): "
            f"{len(fresh_ids)} path tags, {len(preserved)} preserved"
        )
        return resource, ACTION_UPDATED


# Global catalog service instance
catalog_service = CatalogService()
