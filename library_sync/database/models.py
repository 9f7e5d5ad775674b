# library_sync/database/models.py
"""
SQLAlchemy ORM models for the library catalog.

Models:
    - Tag: Node in the classification forest (hierarchy path or attribute facet)
    - Resource: Catalog entry for one remote file
    - resource_tags: Many-to-many association between resources and tags

All models use UUID primary keys and include timestamps for auditing.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from .base import Base


# UUID type that works with both SQLite and PostgreSQL
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            return uuid.UUID(value)
        return value


# ============================================================================
# ENUMERATION TYPES
# ============================================================================

class TagGroup(str, Enum):
    """
    Fixed vocabulary of tag groups.

    Hierarchy groups (LEVEL, GRADE, STREAM, SUBJECT, LESSON) form the
    navigation forest. Attribute groups (MEDIUM, RESOURCE_TYPE, EXAM, YEAR)
    are parentless facets shared across subtrees.
    """
    LEVEL = "LEVEL"
    STREAM = "STREAM"
    GRADE = "GRADE"
    SUBJECT = "SUBJECT"
    MEDIUM = "MEDIUM"
    RESOURCE_TYPE = "RESOURCE_TYPE"
    LESSON = "LESSON"
    EXAM = "EXAM"
    YEAR = "YEAR"


class TagSource(str, Enum):
    SYSTEM = "SYSTEM"
    USER = "USER"


class ResourceSource(str, Enum):
    SYSTEM = "SYSTEM"
    USER = "USER"


class ResourceStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"


HIERARCHY_GROUPS = frozenset(
    g.value for g in (TagGroup.LEVEL, TagGroup.GRADE, TagGroup.STREAM, TagGroup.SUBJECT, TagGroup.LESSON)
)
ATTRIBUTE_GROUPS = frozenset(
    g.value for g in (TagGroup.MEDIUM, TagGroup.RESOURCE_TYPE, TagGroup.EXAM, TagGroup.YEAR)
)


resource_tags = Table(
    "resource_tags",
    Base.metadata,
    Column("resource_id", UUID(), ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", UUID(), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Index("ix_resource_tags_tag_id", "tag_id"),
)


class Tag(Base):
    """
    Tag model: a node in a forest of classification trees.

    Attributes:
        id: Unique tag identifier
        name: Human label as seen in the source folder (trimmed)
        slug: URL-safe identity; context-prefixed with the parent's slug
        group: TagGroup value, or None for unclassified/manual tags
        parent_id: Parent tag (None for roots and for attribute tags)
        source: SYSTEM (derived by the sync) or USER (created from the product)
        created_at: When the tag was created
        updated_at: When the tag was last corrected

    Lifecycle:
        1. Created on first encounter during a sync pass (or by a user)
        2. Group, parent and slug corrected in place when a resync disagrees
        3. Never deleted by the sync
    """

    __tablename__ = "tags"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(1024), nullable=False, unique=True, index=True)
    group = Column(String(50), nullable=True, index=True)
    parent_id = Column(UUID(), ForeignKey("tags.id", ondelete="SET NULL"), nullable=True, index=True)
    source = Column(String(20), nullable=False, default=TagSource.USER.value, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_tags_name_parent", "name", "parent_id"),
        Index("ix_tags_group_parent", "group", "parent_id"),
    )

    @property
    def is_hierarchy(self) -> bool:
        return self.group in HIERARCHY_GROUPS

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name={self.name}, group={self.group}, parent_id={self.parent_id})>"


class Resource(Base):
    """
    Resource model: a catalog entry representing one remote file.

    Attributes:
        id: Unique resource identifier
        title: Display title (the file name on the last sync)
        description: Free text
        external_file_id: Remote store id of the cataloged file (dedup key)
        original_external_file_id: Source file id when the file was copied
        mime_type: MIME type reported by the remote store
        file_size: Size in bytes (None for native documents)
        status: PENDING, APPROVED, REJECTED or ARCHIVED
        source: SYSTEM (sync) or USER (upload)
        uploader_id: Who added the resource
        views, downloads: Usage counters maintained by the product

    Relationships:
        tags: Tag set, replaced on resync with the safe-merge rule
    """

    __tablename__ = "resources"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    title = Column(String(1024), nullable=False, index=True)
    description = Column(Text, nullable=True)

    external_file_id = Column(String(255), nullable=True, unique=True, index=True)
    original_external_file_id = Column(String(255), nullable=True, unique=True, index=True)

    mime_type = Column(String(255), nullable=True)
    file_size = Column(BigInteger, nullable=True)

    status = Column(String(20), nullable=False, default=ResourceStatus.PENDING.value, index=True)
    source = Column(String(20), nullable=False, default=ResourceSource.USER.value, index=True)
    uploader_id = Column(String(255), nullable=True)

    views = Column(Integer, nullable=False, default=0)
    downloads = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    tags = relationship("Tag", secondary=resource_tags, lazy="selectin", order_by="Tag.name")

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, title={self.title}, status={self.status})>"
