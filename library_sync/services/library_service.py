# library_sync/services/library_service.py
"""
Library query surface over the synced tag forest.

Provides:
    - get_library_hierarchy(): the navigable forest rooted at LEVEL tags
    - browse(filters): drill-down by tag names/slugs, returning child folders,
      loose files at the resolved level, and attribute facets over those files

Only SYSTEM tags and APPROVED SYSTEM resources are visible here; user tags and
uploads are served by the product's own endpoints.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import (
    ATTRIBUTE_GROUPS,
    HIERARCHY_GROUPS,
    Resource,
    ResourceSource,
    ResourceStatus,
    Tag,
    TagGroup,
    TagSource,
    resource_tags,
)
from ..models.library_models import (
    BrowseResult,
    FacetCount,
    HierarchyNode,
    ResourceSummary,
    TagSummary,
)

logger = logging.getLogger("library_sync.library")

MAX_DRILL_DEPTH = 10
MAX_BROWSE_RESOURCES = 500


class LibraryService:
    """Read-only browse and hierarchy queries."""

    async def get_library_hierarchy(self, session: AsyncSession) -> List[HierarchyNode]:
        """
        Build the SYSTEM tag forest.

        Tags whose parent is missing (or not a SYSTEM tag) are only returned
        as roots when they are LEVEL tags; attribute tags never appear.
        """
        result = await session.execute(
            select(Tag).where(Tag.source == TagSource.SYSTEM.value).order_by(Tag.name)
        )
        tags = list(result.scalars().all())

        nodes: Dict[UUID, HierarchyNode] = OrderedDict(
            (tag.id, HierarchyNode(id=tag.id, name=tag.name, slug=tag.slug, group=tag.group))
            for tag in tags
        )

        roots: List[HierarchyNode] = []
        for tag in tags:
            node = nodes[tag.id]
            if tag.parent_id is not None and tag.parent_id in nodes:
                nodes[tag.parent_id].children.append(node)
            elif tag.group == TagGroup.LEVEL.value:
                roots.append(node)

        return roots

    async def _find_child_match(
        self,
        session: AsyncSession,
        parent_id: Optional[UUID],
        candidates: List[str],
    ) -> Optional[Tag]:
        query = select(Tag).where(
            Tag.source == TagSource.SYSTEM.value,
            or_(func.lower(Tag.name).in_(candidates), func.lower(Tag.slug).in_(candidates)),
        )
        if parent_id is None:
            query = query.where(Tag.parent_id.is_(None), Tag.group.in_(sorted(HIERARCHY_GROUPS)))
        else:
            query = query.where(Tag.parent_id == parent_id)
        result = await session.execute(query.order_by(Tag.name).limit(1))
        return result.scalars().first()

    async def _children(self, session: AsyncSession, parent_id: Optional[UUID]) -> List[Tag]:
        query = select(Tag).where(Tag.source == TagSource.SYSTEM.value)
        if parent_id is None:
            query = query.where(Tag.parent_id.is_(None), Tag.group.in_(sorted(HIERARCHY_GROUPS)))
        else:
            query = query.where(Tag.parent_id == parent_id)
        result = await session.execute(query.order_by(Tag.name))
        return list(result.scalars().all())

    async def browse(self, session: AsyncSession, filters: Optional[Mapping[str, str]] = None) -> BrowseResult:
        """
        Resolve the deepest node matching the filters and list what is under it.

        Args:
            session: Database session
            filters: Mapping whose values are tag names or slugs (keys are
                ignored, so {"level": "A/L Subjects", "grade": "grade-12"}
                and {"a": "Grade 12", "b": "A/L Subjects"} both work)

        Returns:
            BrowseResult for the resolved level
        """
        candidates = []
        for value in (filters or {}).values():
            if value and value.strip():
                candidates.append(value.strip().lower())

        current: Optional[Tag] = None
        steps = 0
        while candidates and steps < MAX_DRILL_DEPTH:
            steps += 1
            match = await self._find_child_match(session, current.id if current else None, candidates)
            if match is None:
                break
            current = match
            matched = {match.name.lower(), match.slug.lower()}
            candidates = [c for c in candidates if c not in matched]

        current_id = current.id if current else None
        child_tags = await self._children(session, current_id)
        child_ids = {tag.id for tag in child_tags}

        query = select(Resource).where(
            Resource.source == ResourceSource.SYSTEM.value,
            Resource.status == ResourceStatus.APPROVED.value,
        )
        if current_id is not None:
            query = query.where(
                Resource.id.in_(
                    select(resource_tags.c.resource_id).where(resource_tags.c.tag_id == current_id)
                )
            )
        result = await session.execute(query.order_by(Resource.title).limit(MAX_BROWSE_RESOURCES))
        resources = list(result.scalars().all())

        loose: List[ResourceSummary] = []
        counts: Dict[str, Dict[str, int]] = OrderedDict()
        for resource in resources:
            if child_ids and any(tag.id in child_ids for tag in resource.tags):
                continue
            loose.append(ResourceSummary.model_validate(resource))
            for tag in resource.tags:
                if tag.group not in ATTRIBUTE_GROUPS:
                    continue
                group_counts = counts.setdefault(tag.group, OrderedDict())
                group_counts[tag.name] = group_counts.get(tag.name, 0) + 1

        folders: Dict[str, List[TagSummary]] = OrderedDict()
        for tag in child_tags:
            folders.setdefault(tag.group or "Navigation", []).append(TagSummary.model_validate(tag))

        facets = {
            group: [FacetCount(name=name, count=count) for name, count in group_counts.items()]
            for group, group_counts in counts.items()
        }

        logger.debug(
            f"Browse resolved '{current.name if current else 'Library'}' after {steps} step(s): "
            f"{len(child_tags)} folders, {len(loose)} loose files"
        )

        return BrowseResult(
            current_level=current.name if current else "Library",
            current_tag_id=current_id,
            folders=folders,
            resources=loose,
            facets=facets,
        )


# Global library service instance
library_service = LibraryService()
