#!/usr/bin/env python3
# library_sync/commands/check_tags.py
"""
Tag audit report.

Prints how many tags exist per group (tags without a group are reported as
NO_GROUP) with the first 20 names of each, to spot classifier drift after a
sync.

Usage:
    python -m library_sync.commands.check_tags
    python -m library_sync.commands.check_tags --source SYSTEM
"""

import argparse
import asyncio
import logging
import sys
from collections import OrderedDict
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from library_sync.services.database_service import database_service
from library_sync.services.tag_service import tag_service

logger = logging.getLogger("library_sync.commands.check_tags")

SAMPLE_SIZE = 20


async def build_tag_report(session: AsyncSession, source: Optional[str] = None) -> Dict[str, List[str]]:
    """Tag names keyed by group, ordered by group then name."""
    report: Dict[str, List[str]] = OrderedDict()
    for tag in await tag_service.get_tags(session, source=source):
        report.setdefault(tag.group or "NO_GROUP", []).append(tag.name)
    return report


def format_tag_report(report: Dict[str, List[str]]) -> str:
    total = sum(len(names) for names in report.values())
    lines = [f"Total tags: {total}", ""]
    for group, names in report.items():
        lines.append(f"{group}: {len(names)}")
        sample = names[:SAMPLE_SIZE]
        lines.append("  " + ", ".join(sample) + (" ..." if len(names) > SAMPLE_SIZE else ""))
    return "\n".join(lines)


async def check_tags(source: Optional[str]) -> int:
    try:
        async with database_service.get_session() as session:
            report = await build_tag_report(session, source=source)
    finally:
        await database_service.close()

    print(format_tag_report(report))
    return 0


def main():
    """Main entry point for the tag audit command."""
    parser = argparse.ArgumentParser(description="Report tags grouped by tag group")
    parser.add_argument("--source", choices=["SYSTEM", "USER"], default=None, help="Only tags from this source")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(check_tags(args.source)))


if __name__ == "__main__":
    main()
