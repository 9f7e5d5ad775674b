"""
Google Drive folder-tree sync.

Walks a Drive folder tree depth-first and turns it into the tag forest plus
the resource catalog:

    - Each child folder is classified (see folder_classifier). Hierarchy
      folders become a tag parented to the enclosing hierarchy tag; attribute
      folders become a parentless facet tag and are flattened (their contents
      keep the enclosing hierarchy position); unrecognised folders become a
      SUBJECT, or a LESSON once a subject exists on the path.
    - Each file is upserted into the catalog with the path's hierarchy tags
      plus the attribute tags collected on the way down.

The traversal position is carried in an immutable HierarchyContext, so
sibling branches never see each other's state. Each folder walk returns its
own SyncStats which the parent merges.

A tag is committed before its folder is descended. Resource writes are
committed in batches. Remote calls are preceded by a fixed delay and retried
with a fixed backoff on rate-limit and transient errors; permanent errors
skip the folder or file and are counted.

Usage:
    from library_sync.connectors.google_drive.drive_sync_service import drive_sync_service

    async with GoogleDriveClient.from_settings() as drive:
        async with database_service.get_session() as session:
            stats = await drive_sync_service.execute_sync(session, drive)
    print(stats.format_summary())
"""

import asyncio
import fnmatch
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import settings
from ...database.models import TagGroup
from ...models.config_models import GoogleDriveConfig, SyncConfig
from ...services.catalog_service import catalog_service
from ...services.config_loader import config_loader
from ...services.folder_classifier import FolderClassifier, folder_classifier, normalize_folder_name
from ...services.tag_service import tag_service
from .drive_service import (
    DriveItem,
    PermanentDriveError,
    RateLimitError,
    TransientDriveError,
)

logger = logging.getLogger("library_sync.drive_sync")

SYNC_MODES = ("reference", "copy")


class SyncConfigurationError(Exception):
    """Fatal configuration problem; raised before anything is written."""


# =============================================================================
# TRAVERSAL STATE
# =============================================================================

@dataclass(frozen=True)
class HierarchyContext:
    """
    Position of the walk inside the tag forest.

    Attributes:
        ancestor_tag_ids: Hierarchy tags from the top of the branch down
        attribute_tag_ids: Facet tags from flattened folders on the path
        current_parent_tag_id: Parent for the next hierarchy tag
        path_names: Names of the hierarchy tags (the canonical copy path)
        has_subject: Whether a SUBJECT tag exists on the path
        last_group: Group of the nearest hierarchy tag
    """
    ancestor_tag_ids: Tuple[UUID, ...] = ()
    attribute_tag_ids: Tuple[UUID, ...] = ()
    current_parent_tag_id: Optional[UUID] = None
    path_names: Tuple[str, ...] = ()
    has_subject: bool = False
    last_group: Optional[str] = None

    def descend(self, tag_id: UUID, name: str, group: str) -> "HierarchyContext":
        return replace(
            self,
            ancestor_tag_ids=self.ancestor_tag_ids + (tag_id,),
            current_parent_tag_id=tag_id,
            path_names=self.path_names + (name,),
            has_subject=self.has_subject or group == TagGroup.SUBJECT.value,
            last_group=group,
        )

    def with_attribute(self, tag_id: UUID) -> "HierarchyContext":
        if tag_id in self.attribute_tag_ids:
            return self
        return replace(self, attribute_tag_ids=self.attribute_tag_ids + (tag_id,))

    @property
    def tag_ids(self) -> List[UUID]:
        seen: Set[UUID] = set()
        ordered = []
        for tag_id in self.ancestor_tag_ids + self.attribute_tag_ids:
            if tag_id not in seen:
                seen.add(tag_id)
                ordered.append(tag_id)
        return ordered


@dataclass
class SyncStats:
    """Counters for one folder walk (merged upward into the run total)."""
    folders_scanned: int = 0
    folders_skipped: int = 0
    files_processed: int = 0
    files_created: int = 0
    files_updated: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    tags_created: int = 0
    errors: int = 0
    error_details: List[Dict[str, str]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    _COUNTERS = (
        "folders_scanned",
        "folders_skipped",
        "files_processed",
        "files_created",
        "files_updated",
        "files_unchanged",
        "files_skipped",
        "tags_created",
        "errors",
    )

    def merge(self, other: "SyncStats") -> "SyncStats":
        for name in self._COUNTERS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.error_details.extend(other.error_details)
        return self

    def record_error(self, item: str, error: Any) -> None:
        self.errors += 1
        self.error_details.append({"item": item, "error": str(error)})

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at).total_seconds(), 2)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {name: getattr(self, name) for name in self._COUNTERS}
        data["error_details"] = list(self.error_details)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["duration_seconds"] = self.duration_seconds
        return data

    def format_summary(self) -> str:
        lines = [
            "Sync summary",
            f"  Folders scanned:  {self.folders_scanned}",
            f"  Folders skipped:  {self.folders_skipped}",
            f"  Files processed:  {self.files_processed}",
            f"    created:        {self.files_created}",
            f"    updated:        {self.files_updated}",
            f"    unchanged:      {self.files_unchanged}",
            f"    skipped:        {self.files_skipped}",
            f"  Tags created:     {self.tags_created}",
            f"  Errors:           {self.errors}",
        ]
        if self.duration_seconds is not None:
            lines.append(f"  Duration:         {self.duration_seconds}s")
        for detail in self.error_details[:20]:
            lines.append(f"    ! {detail['item']}: {detail['error']}")
        if len(self.error_details) > 20:
            lines.append(f"    ... {len(self.error_details) - 20} more")
        return "\n".join(lines)


@dataclass
class _SyncRun:
    """Per-run collaborators and bookkeeping shared by all branches."""
    session: AsyncSession
    client: Any
    mode: str
    max_depth: int
    sync_config: SyncConfig
    upload_folder_id: Optional[str] = None
    seen_file_ids: Set[str] = field(default_factory=set)
    folder_cache: Dict[Tuple[str, ...], str] = field(default_factory=dict)
    pending_writes: int = 0


# =============================================================================
# SERVICE
# =============================================================================

class DriveSyncService:
    """
    Depth-first Drive walker.

    Collaborators are injectable for tests: the classifier, the sleep function
    used for delays and backoff, and the Drive/sync configuration.
    """

    def __init__(
        self,
        classifier: Optional[FolderClassifier] = None,
        drive_config: Optional[GoogleDriveConfig] = None,
        sync_config: Optional[SyncConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.classifier = classifier or folder_classifier
        self._drive_config = drive_config
        self._sync_config = sync_config
        self._sleep = sleep or asyncio.sleep

    @property
    def drive_config(self) -> GoogleDriveConfig:
        return self._drive_config or config_loader.get_google_drive_config()

    @property
    def sync_config(self) -> SyncConfig:
        return self._sync_config or config_loader.get_sync_config()

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def execute_sync(
        self,
        session: AsyncSession,
        client: Any,
        root_folder_id: Optional[str] = None,
        mode: Optional[str] = None,
        max_depth: Optional[int] = None,
    ) -> SyncStats:
        """
        Run one sync pass from the root folder.

        Args:
            session: Database session (committed as the walk progresses)
            client: Drive client (GoogleDriveClient or a compatible fake)
            root_folder_id: Override for ROOT_FOLDER_ID
            mode: "reference" or "copy" (defaults to config.yml)
            max_depth: Override for the recursion guard

        Returns:
            SyncStats for the whole run

        Raises:
            SyncConfigurationError: Missing ids, bad mode, unreachable database
                or unreachable root/destination folder
            DriveAuthError: If Drive credentials stop working mid-run
        """
        sync_config = self.sync_config
        root_folder_id = root_folder_id or settings.root_folder_id
        mode = mode or sync_config.mode
        max_depth = max_depth if max_depth is not None else sync_config.max_depth

        if not root_folder_id:
            raise SyncConfigurationError("Root folder id is not configured (set ROOT_FOLDER_ID)")
        if mode not in SYNC_MODES:
            raise SyncConfigurationError(f"Unknown sync mode '{mode}' (expected one of {', '.join(SYNC_MODES)})")
        if mode == "copy" and not settings.upload_folder_id:
            raise SyncConfigurationError("Copy mode requires a destination folder (set UPLOAD_FOLDER_ID)")

        try:
            await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise SyncConfigurationError(f"Database is unreachable: {e}") from e

        run = _SyncRun(
            session=session,
            client=client,
            mode=mode,
            max_depth=max_depth,
            sync_config=sync_config,
            upload_folder_id=settings.upload_folder_id if mode == "copy" else None,
        )

        root = await self._require_folder(run, root_folder_id, "Root folder")
        if run.upload_folder_id:
            await self._require_folder(run, run.upload_folder_id, "Destination folder")

        started_at = datetime.now(timezone.utc)
        logger.info(f"Starting {mode} sync from '{root.name}' ({root.id}), max depth {max_depth}")

        stats = await self._walk_folder(run, root.id, root.name, HierarchyContext(), depth=0)
        await self._commit(run)

        stats.started_at = started_at
        stats.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Sync complete: {stats.folders_scanned} folders, {stats.files_processed} files "
            f"({stats.files_created} created, {stats.files_updated} updated), "
            f"{stats.tags_created} tags created, {stats.errors} errors in {stats.duration_seconds}s"
        )
        return stats

    async def _require_folder(self, run: _SyncRun, folder_id: str, label: str) -> DriveItem:
        try:
            item = await self.call_drive(run.client.get_file, folder_id)
        except (TransientDriveError, PermanentDriveError) as e:
            raise SyncConfigurationError(f"{label} {folder_id} is not reachable: {e}") from e
        if not item.is_folder:
            raise SyncConfigurationError(f"{label} {folder_id} is not a folder ({item.mime_type})")
        return item

    # -------------------------------------------------------------------------
    # Remote calls
    # -------------------------------------------------------------------------

    async def call_drive(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """
        Call the Drive client with the fixed pre-call delay and retry policy.

        Rate-limit and transient errors are retried after a fixed backoff (or
        the server's Retry-After, if longer) up to max_retries; the last error
        is re-raised. Permanent errors are raised immediately.
        """
        config = self.drive_config
        attempt = 0
        while True:
            await self._sleep(config.api_delay_ms / 1000.0)
            try:
                return await fn(*args)
            except RateLimitError as e:
                if attempt >= config.max_retries:
                    raise
                delay = max(config.rate_limit_backoff_seconds, e.retry_after or 0)
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{config.max_retries + 1}) - waiting {delay}s..."
                )
            except TransientDriveError as e:
                if attempt >= config.max_retries:
                    raise
                delay = config.rate_limit_backoff_seconds
                logger.warning(
                    f"Transient Drive error (attempt {attempt + 1}/{config.max_retries + 1}): {e}. "
                    f"Waiting {delay}s..."
                )
            await self._sleep(delay)
            attempt += 1

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    async def _walk_folder(
        self,
        run: _SyncRun,
        folder_id: str,
        folder_path: str,
        context: HierarchyContext,
        depth: int,
    ) -> SyncStats:
        stats = SyncStats()

        if depth > run.max_depth:
            logger.error(f"Maximum depth {run.max_depth} exceeded at '{folder_path}' - branch abandoned")
            stats.record_error(folder_path, f"Maximum depth {run.max_depth} exceeded")
            return stats

        page_token: Optional[str] = None
        while True:
            try:
                page = await self.call_drive(run.client.list_children, folder_id, page_token)
            except (TransientDriveError, PermanentDriveError) as e:
                logger.error(f"Failed to list folder '{folder_path}': {e}")
                stats.record_error(folder_path, e)
                return stats

            for item in page.items:
                if item.is_folder:
                    stats.merge(await self._process_folder(run, item, folder_path, context, depth))
                else:
                    await self._process_file(run, item, folder_path, context, stats)

            page_token = page.next_page_token
            if not page_token:
                break

        stats.folders_scanned += 1
        logger.debug(f"Scanned '{folder_path}'")
        return stats

    def _matches_any(self, name: str, patterns: List[str]) -> bool:
        return any(fnmatch.fnmatch(name.lower(), p.lower()) for p in patterns)

    async def _process_folder(
        self,
        run: _SyncRun,
        item: DriveItem,
        parent_path: str,
        context: HierarchyContext,
        depth: int,
    ) -> SyncStats:
        stats = SyncStats()
        name = normalize_folder_name(item.name)
        folder_path = f"{parent_path}/{name}"

        if not name:
            logger.warning(f"Skipping folder {item.id} with an empty name under '{parent_path}'")
            stats.folders_skipped += 1
            return stats

        if self._matches_any(name, run.sync_config.folder_exclude_patterns):
            logger.info(f"Skipped excluded folder: {folder_path}")
            stats.folders_skipped += 1
            return stats

        if self._matches_any(name, run.sync_config.transparent_folder_patterns):
            logger.debug(f"Descending transparent folder: {folder_path}")
            return await self._walk_folder(run, item.id, folder_path, context, depth + 1)

        # Children must see committed parents; commit pending resources first so a
        # failed tag write can be rolled back without losing them.
        if run.pending_writes:
            await self._commit(run)

        try:
            child_context, created = await self._resolve_folder_context(run, name, context, folder_path)
            await self._commit(run)
        except SQLAlchemyError as e:
            await run.session.rollback()
            logger.error(f"Failed to materialize tag for '{folder_path}': {e}")
            stats.record_error(folder_path, e)
            return stats

        if created:
            stats.tags_created += 1
        return stats.merge(await self._walk_folder(run, item.id, folder_path, child_context, depth + 1))

    async def _resolve_folder_context(
        self,
        run: _SyncRun,
        name: str,
        context: HierarchyContext,
        folder_path: str,
    ) -> Tuple[HierarchyContext, bool]:
        classification = self.classifier.classify(name)

        if classification is not None and not classification.is_hierarchy:
            tag, created = await tag_service.resolve_tag(run.session, name, classification.group, None)
            logger.debug(f"Flattened {classification.group.value} folder: {folder_path}")
            return context.with_attribute(tag.id), created

        if classification is not None:
            group = classification.group.value
        else:
            group = await self._fallback_group(run, name, context, folder_path)

        tag, created = await tag_service.resolve_tag(
            run.session, name, group, context.current_parent_tag_id
        )
        logger.debug(f"{group} '{name}' <- {folder_path}")
        return context.descend(tag.id, tag.name, group), created

    async def _fallback_group(
        self,
        run: _SyncRun,
        name: str,
        context: HierarchyContext,
        folder_path: str,
    ) -> str:
        """Positional fallback for names no rule recognises."""
        if context.current_parent_tag_id is None:
            known_root = await tag_service.find_root_level(run.session, name)
            if known_root is not None:
                return TagGroup.LEVEL.value

        fallback = TagGroup.LESSON.value if context.has_subject else TagGroup.SUBJECT.value
        if context.last_group == TagGroup.LEVEL.value:
            logger.warning(
                f"Expected a GRADE folder at '{folder_path}', got unrecognised name '{name}'; "
                f"treating as {fallback}"
            )
        return fallback

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def _process_file(
        self,
        run: _SyncRun,
        item: DriveItem,
        parent_path: str,
        context: HierarchyContext,
        stats: SyncStats,
    ) -> None:
        file_path = f"{parent_path}/{item.name}"

        if item.id in run.seen_file_ids:
            logger.debug(f"Skipping file already processed this run: {file_path}")
            stats.files_skipped += 1
            return
        run.seen_file_ids.add(item.id)
        stats.files_processed += 1

        # One SAVEPOINT per file: a failure discards this file's writes and
        # leaves the batch's earlier uncommitted files and the transaction usable.
        tags_created = 0
        try:
            async with run.session.begin_nested():
                tag_ids = context.tag_ids
                if run.sync_config.tag_file_name_attributes:
                    attribute_tag_id, created = await self._file_name_attribute(run, item.name)
                    if attribute_tag_id is not None and attribute_tag_id not in tag_ids:
                        tag_ids.append(attribute_tag_id)
                    if created:
                        tags_created += 1

                if run.mode == "copy":
                    external_id, original_id = await self._copy_into_canonical(run, item, context)
                else:
                    external_id, original_id = item.id, None

                _, action = await catalog_service.upsert_file_resource(
                    run.session,
                    external_id=external_id,
                    name=item.name,
                    mime_type=item.mime_type,
                    size=item.size,
                    hierarchy_tag_ids=tag_ids,
                    original_external_id=original_id,
                )
        except (TransientDriveError, PermanentDriveError, SQLAlchemyError) as e:
            logger.error(f"Failed to sync file '{file_path}': {e}")
            stats.record_error(file_path, e)
            return

        stats.tags_created += tags_created
        if action == "created":
            stats.files_created += 1
        elif action == "updated":
            stats.files_updated += 1
        else:
            stats.files_unchanged += 1

        run.pending_writes += 1
        if run.pending_writes >= run.sync_config.batch_commit_size:
            await self._commit(run)

    async def _file_name_attribute(self, run: _SyncRun, file_name: str) -> Tuple[Optional[UUID], bool]:
        stem = normalize_folder_name(os.path.splitext(file_name)[0])
        classification = self.classifier.classify_attribute(stem)
        if classification is None:
            return None, False
        tag, created = await tag_service.resolve_tag(run.session, stem, classification.group, None)
        return tag.id, created

    async def _copy_into_canonical(
        self,
        run: _SyncRun,
        item: DriveItem,
        context: HierarchyContext,
    ) -> Tuple[str, Optional[str]]:
        """
        Copy a source file under the destination folder, once.

        Returns:
            Tuple of (cataloged file id, source file id)
        """
        existing = await catalog_service.find_by_external_id(run.session, item.id)
        if existing is not None:
            return existing.external_file_id, existing.original_external_file_id

        folder_id = await self._ensure_canonical_folder(run, context.path_names)
        copy = await self.call_drive(run.client.copy_file, item.id, folder_id, item.name)
        logger.info(f"Copied '{item.name}' ({item.id}) -> {copy.id}")
        return copy.id, item.id

    async def _ensure_canonical_folder(self, run: _SyncRun, path_names: Tuple[str, ...]) -> str:
        parent_id = run.upload_folder_id
        for index, name in enumerate(path_names):
            key = tuple(path_names[: index + 1])
            cached = run.folder_cache.get(key)
            if cached:
                parent_id = cached
                continue
            folder = await self.call_drive(run.client.find_folder, parent_id, name)
            if folder is None:
                folder = await self.call_drive(run.client.create_folder, parent_id, name)
            run.folder_cache[key] = folder.id
            parent_id = folder.id
        return parent_id

    async def _commit(self, run: _SyncRun) -> None:
        await run.session.commit()
        run.pending_writes = 0


# Global drive sync service instance
drive_sync_service = DriveSyncService()
