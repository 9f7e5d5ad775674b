# library_sync/models/library_models.py
"""
Pydantic models for tag and library query results.

These are the shapes handed to the surrounding product (and printed by the
operator commands); ORM rows never leave the service layer.
"""

from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TagSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    group: Optional[str] = None
    parent_id: Optional[UUID] = None
    source: str


class HierarchyNode(BaseModel):
    """A node of the navigable tag forest."""
    id: UUID
    name: str
    slug: str
    group: Optional[str] = None
    children: List["HierarchyNode"] = Field(default_factory=list)


class FacetCount(BaseModel):
    name: str
    count: int


class ResourceSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: Optional[str] = None
    external_file_id: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    views: int = 0
    downloads: int = 0
    tags: List[TagSummary] = Field(default_factory=list)


class BrowseResult(BaseModel):
    """
    One level of the library browse view.

    Attributes:
        current_level: Name of the resolved node ("Library" at the top)
        current_tag_id: Resolved node id (None at the top)
        folders: Child hierarchy tags grouped by tag group
        resources: Loose files at this level
        facets: Attribute group -> value counts over the loose files
    """
    current_level: str
    current_tag_id: Optional[UUID] = None
    folders: Dict[str, List[TagSummary]] = Field(default_factory=dict)
    resources: List[ResourceSummary] = Field(default_factory=list)
    facets: Dict[str, List[FacetCount]] = Field(default_factory=dict)


HierarchyNode.model_rebuild()
