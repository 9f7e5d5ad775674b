#!/usr/bin/env python3
# library_sync/commands/map_drive.py
"""
Print the Drive folder tree with each folder's classification.

Read-only: nothing is written to the database. Useful before a first sync to
see how the classifier will read the tree, and which folders will fall back
to SUBJECT/LESSON.

Usage:
    python -m library_sync.commands.map_drive
    python -m library_sync.commands.map_drive --root-folder-id <id> --max-depth 4 --output tree.txt
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, List, Optional

from library_sync.config import settings
from library_sync.connectors.google_drive.drive_service import (
    DriveError,
    GoogleDriveClient,
    PermanentDriveError,
    TransientDriveError,
)
from library_sync.connectors.google_drive.drive_sync_service import drive_sync_service
from library_sync.services.folder_classifier import folder_classifier

logger = logging.getLogger("library_sync.commands.map_drive")


def describe_folder(name: str) -> str:
    classification = folder_classifier.classify(name)
    if classification is None:
        return "unclassified"
    kind = "hierarchy" if classification.is_hierarchy else "attribute"
    return f"{classification.group.value} ({kind})"


async def build_folder_map(client: Any, folder_id: str, max_depth: int, depth: int = 0) -> List[str]:
    """Return indented lines for the folders under folder_id."""
    lines: List[str] = []
    if depth >= max_depth:
        return lines

    page_token: Optional[str] = None
    while True:
        try:
            page = await drive_sync_service.call_drive(client.list_children, folder_id, page_token)
        except (TransientDriveError, PermanentDriveError) as e:
            lines.append(f"{'    ' * depth}!! {e}")
            return lines

        for item in page.items:
            if not item.is_folder:
                continue
            lines.append(f"{'    ' * depth}{item.name}  [{describe_folder(item.name)}]")
            lines.extend(await build_folder_map(client, item.id, max_depth, depth + 1))

        page_token = page.next_page_token
        if not page_token:
            break
    return lines


async def map_drive(root_folder_id: Optional[str], max_depth: int, output: Optional[str]) -> int:
    root_folder_id = root_folder_id or settings.root_folder_id
    if not root_folder_id:
        logger.error("Root folder id is not configured (set ROOT_FOLDER_ID or pass --root-folder-id)")
        return 1

    try:
        async with GoogleDriveClient.from_settings() as drive:
            root = await drive_sync_service.call_drive(drive.get_file, root_folder_id)
            lines = [f"{root.name}  ({root.id})"]
            lines.extend(await build_folder_map(drive, root.id, max_depth, depth=1))
    except DriveError as e:
        logger.error(f"Cannot map Drive tree: {e}")
        return 1

    text = "\n".join(lines)
    print(text)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        logger.info(f"Folder map written to {output}")
    return 0


def main():
    """Main entry point for the map command."""
    parser = argparse.ArgumentParser(description="Print the Drive folder tree with classifications")
    parser.add_argument("--root-folder-id", default=None, help="Drive folder to start from")
    parser.add_argument("--max-depth", type=int, default=6, help="Levels to descend (default: 6)")
    parser.add_argument("--output", "-o", default=None, help="Also write the map to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(map_drive(args.root_folder_id, args.max_depth, args.output)))


if __name__ == "__main__":
    main()
