# library_sync/services/tag_service.py
"""
Tag repository for the library taxonomy.

Owns slug generation and the idempotent find-or-create used by the Drive sync
and the seed command, plus the tag listing queries used by the product.

Slug strategy:
    The base slug is derived from the name. When a parent is known, the
    parent's slug is prefixed unless the base slug already starts with it,
    so "Grade 12" under "A/L Subjects" and under "O/L Subjects" get distinct
    slugs. Rows created before prefixing (or through another path) are still
    found through a fallback lookup on (name, parent_id).

    A slug row only stands for the requested node when the names agree.
    Different folders can still compute the same slug ("A/L Subjects
    Grade 12" at the root and "Grade 12" under "A/L Subjects"); the later
    one takes the next free numbered slug ("...-2"). Slugs longer than
    MAX_SLUG_LENGTH swap the ancestor prefix for a digest.

Usage:
    from library_sync.services.tag_service import tag_service

    tag, created = await tag_service.resolve_tag(session, "Grade 12", TagGroup.GRADE, level.id)
"""

import hashlib
import logging
import re
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import HIERARCHY_GROUPS, Tag, TagGroup, TagSource
from ..models.library_models import TagSummary
from .folder_classifier import normalize_folder_name

logger = logging.getLogger("library_sync.tags")

GroupValue = Union[TagGroup, str, None]

# Leaves room for a collision suffix inside the slug column
MAX_SLUG_LENGTH = 200


def generate_slug(name: str) -> str:
    """Generate a URL-friendly slug from a name."""
    slug = name.lower()
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    if not slug:
        # Names written entirely in Sinhala or Tamil script
        slug = "tag-" + hashlib.sha1(name.encode("utf-8")).hexdigest()[:10]
    return slug


def contextual_slug(name: str, parent_slug: Optional[str]) -> str:
    """Prefix the parent's slug unless the base slug already starts with it."""
    base = generate_slug(name)
    if not parent_slug or base == parent_slug or base.startswith(parent_slug + "-"):
        slug = base
    else:
        slug = f"{parent_slug}-{base}"
    if len(slug) <= MAX_SLUG_LENGTH:
        return slug
    digest = hashlib.sha1(slug.encode("utf-8")).hexdigest()[:12]
    return f"{digest}-{base[:MAX_SLUG_LENGTH - len(digest) - 1]}".rstrip("-")


def _group_value(group: GroupValue) -> Optional[str]:
    if group is None:
        return None
    return group.value if isinstance(group, TagGroup) else str(group)


def _source_value(source: Union[TagSource, str]) -> str:
    return source.value if isinstance(source, TagSource) else str(source)


class TagService:
    """
    Service for tag lookups and idempotent tag materialization.

    All methods take the caller's session and never commit; the caller owns
    the transaction (the sync commits after every tag so children always see
    their parent).
    """

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def find_by_slug(self, session: AsyncSession, slug: str) -> Optional[Tag]:
        result = await session.execute(select(Tag).where(Tag.slug == slug))
        return result.scalar_one_or_none()

    async def find_by_name_and_parent(
        self,
        session: AsyncSession,
        name: str,
        parent_id: Optional[UUID],
    ) -> List[Tag]:
        """Case-insensitive name matches under an exact parent (NULL for roots), oldest first."""
        query = select(Tag).where(func.lower(Tag.name) == name.lower())
        if parent_id is None:
            query = query.where(Tag.parent_id.is_(None))
        else:
            query = query.where(Tag.parent_id == parent_id)
        result = await session.execute(query.order_by(Tag.created_at))
        return list(result.scalars().all())

    async def find_children(self, session: AsyncSession, parent_id: Optional[UUID]) -> List[Tag]:
        """Immediate children of a tag (roots when parent_id is None)."""
        query = select(Tag)
        if parent_id is None:
            query = query.where(Tag.parent_id.is_(None))
        else:
            query = query.where(Tag.parent_id == parent_id)
        result = await session.execute(query.order_by(Tag.name))
        return list(result.scalars().all())

    async def find_root_level(self, session: AsyncSession, name: str) -> Optional[Tag]:
        """Find a parentless LEVEL tag by name (case-insensitive)."""
        result = await session.execute(
            select(Tag)
            .where(
                Tag.parent_id.is_(None),
                Tag.group == TagGroup.LEVEL.value,
                func.lower(Tag.name) == normalize_folder_name(name).lower(),
            )
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    def _is_same_node(tag: Tag, name: str, group: Optional[str], parent_id: Optional[UUID]) -> bool:
        """Whether an existing row may stand for (name, group, parent_id)."""
        if normalize_folder_name(tag.name).lower() != name.lower():
            return False
        moves = tag.group != group or (tag.parent_id != parent_id and tag.id != parent_id)
        if not moves:
            return True
        curated = tag.source == TagSource.USER.value or (
            tag.parent_id is None and tag.group not in HIERARCHY_GROUPS
        )
        if curated:
            # Curated attributes never join the folder hierarchy
            return parent_id is None and group not in HIERARCHY_GROUPS
        return True

    async def _lookup(
        self,
        session: AsyncSession,
        slug: str,
        name: str,
        group: Optional[str],
        parent_id: Optional[UUID],
    ) -> Tuple[Optional[Tag], str]:
        """
        Find the row for a node, walking numbered slugs past collisions.

        Returns:
            Tuple of (matching tag or None, slug the node owns or should take)
        """
        candidate = slug
        suffix = 1
        while True:
            holder = await self.find_by_slug(session, candidate)
            if holder is None:
                break
            if self._is_same_node(holder, name, group, parent_id):
                return holder, candidate
            suffix += 1
            candidate = f"{slug}-{suffix}"

        if candidate != slug:
            logger.debug(f"Slug '{slug}' belongs to another tag, '{name}' uses '{candidate}'")

        for tag in await self.find_by_name_and_parent(session, name, parent_id):
            if self._is_same_node(tag, name, group, parent_id):
                return tag, candidate
        return None, candidate

    # =========================================================================
    # FIND-OR-CREATE
    # =========================================================================

    async def compute_slug(self, session: AsyncSession, name: str, parent_id: Optional[UUID]) -> str:
        parent_slug = None
        if parent_id is not None:
            parent = await session.get(Tag, parent_id)
            if parent is not None:
                parent_slug = parent.slug
        return contextual_slug(name, parent_slug)

    async def resolve_tag(
        self,
        session: AsyncSession,
        name: str,
        group: GroupValue,
        parent_id: Optional[UUID] = None,
        source: Union[TagSource, str] = TagSource.SYSTEM,
    ) -> Tuple[Tag, bool]:
        """
        Find or create a tag, correcting drift on an existing row.

        Args:
            session: Database session
            name: Tag name (normalized before use)
            group: Tag group, or None for unclassified tags
            parent_id: Parent tag id (None for roots and attributes)
            source: Source recorded on a newly created row

        Returns:
            Tuple of (tag, created)

        Raises:
            ValueError: If the name is empty after normalization
        """
        clean = normalize_folder_name(name)
        if not clean:
            raise ValueError("Tag name cannot be empty")

        group_value = _group_value(group)
        slug = await self.compute_slug(session, clean, parent_id)

        tag, slug = await self._lookup(session, slug, clean, group_value, parent_id)
        if tag is not None:
            await self._correct_drift(session, tag, group_value, parent_id, slug)
            return tag, False

        try:
            async with session.begin_nested():
                tag = Tag(
                    name=clean,
                    slug=slug,
                    group=group_value,
                    parent_id=parent_id,
                    source=_source_value(source),
                )
                session.add(tag)
                await session.flush()
        except IntegrityError:
            # Another writer created the same node first
            logger.debug(f"Tag '{clean}' created concurrently, re-reading")
            tag, slug = await self._lookup(session, slug, clean, group_value, parent_id)
            if tag is None:
                raise
            await self._correct_drift(session, tag, group_value, parent_id, slug)
            return tag, False

        logger.info(
            f"Created tag '{clean}' (group={group_value}, slug={slug}, "
            f"parent={'ROOT' if parent_id is None else parent_id})"
        )
        return tag, True

    async def ensure_tag(
        self,
        session: AsyncSession,
        name: str,
        group: GroupValue,
        parent_id: Optional[UUID] = None,
    ) -> Tag:
        tag, _ = await self.resolve_tag(session, name, group, parent_id)
        return tag

    async def _correct_drift(
        self,
        session: AsyncSession,
        tag: Tag,
        group: Optional[str],
        parent_id: Optional[UUID],
        slug: str,
    ) -> None:
        changes = {}
        if tag.group != group:
            changes["group"] = group
        if tag.parent_id != parent_id and tag.id != parent_id:
            changes["parent_id"] = parent_id
        if tag.slug != slug:
            holder = await self.find_by_slug(session, slug)
            if holder is None or holder.id == tag.id:
                changes["slug"] = slug
            else:
                logger.warning(
                    f"Cannot move tag '{tag.name}' to slug '{slug}': already used by {holder.id}"
                )

        if not changes:
            return

        logger.info(f"Correcting tag '{tag.name}' ({tag.id}): {changes}")
        async with session.begin_nested():
            for key, value in changes.items():
                setattr(tag, key, value)
            await session.flush()

    async def create_user_tag(
        self,
        session: AsyncSession,
        name: str,
        group: GroupValue = None,
        parent_id: Optional[UUID] = None,
    ) -> Tag:
        """Product-side find-or-create; new rows are recorded as USER tags."""
        tag, _ = await self.resolve_tag(session, name, group, parent_id, source=TagSource.USER)
        return tag

    # =========================================================================
    # LISTING
    # =========================================================================

    async def get_tags(
        self,
        session: AsyncSession,
        source: Optional[Union[TagSource, str]] = None,
        group: GroupValue = None,
        search: Optional[str] = None,
    ) -> List[Tag]:
        """List tags ordered by group then name."""
        query = select(Tag)
        if source is not None:
            query = query.where(Tag.source == _source_value(source))
        if group is not None:
            query = query.where(Tag.group == _group_value(group))
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(func.lower(Tag.name).like(pattern), Tag.slug.like(pattern)))
        result = await session.execute(query.order_by(Tag.group, Tag.name))
        return list(result.scalars().all())

    async def get_tags_grouped(
        self,
        session: AsyncSession,
        source: Optional[Union[TagSource, str]] = None,
    ) -> Dict[str, List[TagSummary]]:
        """
        Group tags for filter menus.

        LESSON tags are left out (too many to be useful as a filter); tags
        without a group land under "Other"; names repeated under several
        parents appear once per group.
        """
        tags = await self.get_tags(session, source=source)
        grouped: Dict[str, List[TagSummary]] = OrderedDict()
        seen = set()
        for tag in tags:
            if tag.group == TagGroup.LESSON.value:
                continue
            group_name = tag.group or "Other"
            key = (group_name, tag.name.lower())
            if key in seen:
                continue
            seen.add(key)
            grouped.setdefault(group_name, []).append(TagSummary.model_validate(tag))
        return grouped


# Global tag service instance
tag_service = TagService()
