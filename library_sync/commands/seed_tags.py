#!/usr/bin/env python3
# library_sync/commands/seed_tags.py
"""
Seed the library taxonomy.

Creates the parentless attribute facets (MEDIUM, RESOURCE_TYPE, EXAM, YEAR)
and the navigation skeleton (LEVEL -> GRADE -> STREAM) through the same
find-or-create the Drive sync uses, so seeded rows and synced rows share
slugs. Re-running is a no-op.

Root names match the Drive folder names ("A/L Subjects", not "A/L") so that
the first sync attaches to the seeded nodes. Custom roots (IELTS, Korean) are
seeded as LEVEL tags; the sync recognises them by name at the top of a branch.

Usage:
    python -m library_sync.commands.seed_tags
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from library_sync.database.models import TagGroup
from library_sync.services.database_service import database_service
from library_sync.services.folder_classifier import folder_classifier
from library_sync.services.tag_service import tag_service

logger = logging.getLogger("library_sync.commands.seed_tags")


ATTRIBUTES: Dict[TagGroup, List[str]] = {
    TagGroup.MEDIUM: ["Sinhala Medium", "Tamil Medium", "English Medium"],
    TagGroup.RESOURCE_TYPE: [
        "Past Paper",
        "Marking Scheme",
        "Teachers Guide",
        "Short Note",
        "Syllabus",
        "Textbook",
        "Model Paper",
    ],
    TagGroup.EXAM: ["Term 1", "Term 2", "Term 3", "Final Exam"],
    TagGroup.YEAR: ["2020", "2021", "2022", "2023", "2024", "2025", "2026"],
}

_AL_STREAMS = [
    {"name": "Science Stream"},
    {"name": "Maths Stream"},
    {"name": "Arts Stream"},
    {"name": "Commerce Stream"},
    {"name": "Technology Stream"},
    {"name": "Common Stream"},
]

HIERARCHY_SKELETON: List[Dict[str, Any]] = [
    {
        "name": "A/L Subjects",
        "children": [
            {"name": "Grade 12", "children": _AL_STREAMS},
            {"name": "Grade 13", "children": _AL_STREAMS},
        ],
    },
    {
        "name": "O/L Subjects",
        "children": [{"name": "Grade 10"}, {"name": "Grade 11"}],
    },
    {
        "name": "6 - 9 Class Subjects",
        "children": [{"name": f"Grade {n}"} for n in range(6, 10)],
    },
    {
        "name": "Primary Class Subjects",
        "children": [{"name": f"Grade {n}"} for n in range(1, 6)],
    },
    {
        "name": "Scholarship",
        "children": [{"name": "Grade 5"}],
    },
    {"name": "IELTS"},
    {"name": "Korean"},
]


def _skeleton_group(name: str, parent_id: Optional[UUID]) -> TagGroup:
    if parent_id is None:
        return TagGroup.LEVEL
    classification = folder_classifier.classify(name)
    if classification is not None and classification.is_hierarchy:
        return classification.group
    return TagGroup.SUBJECT


async def _seed_node(
    session: AsyncSession,
    node: Dict[str, Any],
    parent_id: Optional[UUID],
    counts: Dict[str, int],
) -> None:
    group = _skeleton_group(node["name"], parent_id)
    tag, created = await tag_service.resolve_tag(session, node["name"], group, parent_id)
    counts["created" if created else "existing"] += 1
    for child in node.get("children", []):
        await _seed_node(session, child, tag.id, counts)


async def seed_taxonomy(session: AsyncSession) -> Dict[str, int]:
    """
    Seed attributes and the hierarchy skeleton.

    Returns:
        Dict with "created" and "existing" tag counts
    """
    counts = {"created": 0, "existing": 0}

    logger.info("Seeding attributes...")
    for group, names in ATTRIBUTES.items():
        for name in names:
            _, created = await tag_service.resolve_tag(session, name, group, None)
            counts["created" if created else "existing"] += 1

    logger.info("Seeding hierarchy...")
    for root in HIERARCHY_SKELETON:
        await _seed_node(session, root, None, counts)

    await session.commit()
    return counts


async def seed_tags() -> int:
    logger.info("=" * 80)
    logger.info("TAG SEEDING")
    logger.info("=" * 80)

    try:
        health = await database_service.health_check()
        if health.get("status") != "healthy":
            logger.error("Database is not healthy. Seeding aborted.")
            return 1
        await database_service.init_db()

        async with database_service.get_session() as session:
            counts = await seed_taxonomy(session)

        logger.info(f"Seeding complete: {counts['created']} created, {counts['existing']} already present")
        return 0
    finally:
        await database_service.close()


def main():
    """Main entry point for the seed command."""
    parser = argparse.ArgumentParser(description="Seed the library tag taxonomy")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(seed_tags()))


if __name__ == "__main__":
    main()
