"""
Database package for Library Sync.

Provides SQLAlchemy models, base classes, and database session management.
"""

from .base import Base, get_db
from .models import (
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

__all__ = [
    "Base",
    "get_db",
    "Tag",
    "Resource",
    "resource_tags",
    "TagGroup",
    "TagSource",
    "ResourceSource",
    "ResourceStatus",
    "HIERARCHY_GROUPS",
    "ATTRIBUTE_GROUPS",
]
