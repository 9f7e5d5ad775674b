#!/usr/bin/env python3
# library_sync/commands/sync_drive.py
"""
Run a Google Drive library sync.

Walks the configured Drive root, classifies folders into the tag forest and
upserts every file into the resource catalog. Safe to re-run: an unchanged
tree produces no new tags and no duplicate resources.

Usage:
    # Reference mode (catalog files where they are)
    python -m library_sync.commands.sync_drive

    # Copy files into the canonical folder tree under UPLOAD_FOLDER_ID
    python -m library_sync.commands.sync_drive --mode copy

    # Sync a different root with a tighter depth guard
    python -m library_sync.commands.sync_drive --root-folder-id <id> --max-depth 8

Environment Variables Required:
    - GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN
    - ROOT_FOLDER_ID (unless --root-folder-id is given)
    - UPLOAD_FOLDER_ID (copy mode only)
    - DATABASE_URL (defaults to a local SQLite file)

Exit status is 1 when the run could not start (configuration, credentials,
database); per-folder and per-file failures are reported in the summary.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from library_sync.config import settings
from library_sync.connectors.google_drive.drive_service import DriveError, GoogleDriveClient
from library_sync.connectors.google_drive.drive_sync_service import (
    SyncConfigurationError,
    drive_sync_service,
)
from library_sync.services.config_loader import config_loader
from library_sync.services.database_service import database_service

logger = logging.getLogger("library_sync.commands.sync_drive")


async def run_sync(
    mode: Optional[str] = None,
    root_folder_id: Optional[str] = None,
    max_depth: Optional[int] = None,
    as_json: bool = False,
) -> int:
    """
    Execute one sync run and print the summary.

    Returns:
        Process exit code
    """
    logger.info("=" * 80)
    logger.info("GOOGLE DRIVE LIBRARY SYNC")
    logger.info("=" * 80)

    try:
        health = await database_service.health_check()
        if health.get("status") != "healthy":
            logger.error(f"Database is not healthy: {health.get('error')}. Sync aborted.")
            return 1
        await database_service.init_db()

        async with GoogleDriveClient.from_settings() as drive:
            async with database_service.get_session() as session:
                stats = await drive_sync_service.execute_sync(
                    session,
                    drive,
                    root_folder_id=root_folder_id,
                    mode=mode,
                    max_depth=max_depth,
                )

    except SyncConfigurationError as e:
        logger.error(f"Sync aborted: {e}")
        return 1
    except DriveError as e:
        logger.error(f"Sync aborted, Google Drive is unavailable: {e}")
        return 1
    finally:
        await database_service.close()

    if as_json:
        print(json.dumps(stats.to_dict(), indent=2))
    else:
        print(stats.format_summary())
    return 0


def main():
    """Main entry point for the sync command."""
    parser = argparse.ArgumentParser(
        description="Sync the Google Drive library tree into tags and resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--mode",
        choices=["reference", "copy"],
        default=None,
        help="reference: catalog files in place; copy: mirror into UPLOAD_FOLDER_ID (default: config.yml)",
    )
    parser.add_argument(
        "--root-folder-id",
        default=None,
        help="Drive folder to start from (default: ROOT_FOLDER_ID)",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Abandon branches deeper than this (default: config.yml sync.max_depth)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yml",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run summary as JSON",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.config:
        config_loader.config_path = args.config
        try:
            config_loader.reload()
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Cannot load configuration: {e}")
            sys.exit(1)

    exit_code = asyncio.run(
        run_sync(
            mode=args.mode,
            root_folder_id=args.root_folder_id,
            max_depth=args.max_depth,
            as_json=args.json,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
