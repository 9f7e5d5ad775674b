"""
Tests for the operator commands.

Covers taxonomy seeding, the tag audit report, the read-only folder map and
the sync command's exit codes.
"""

import pytest
from sqlalchemy import func, select

from library_sync.commands import check_tags as check_tags_command
from library_sync.commands import map_drive as map_drive_command
from library_sync.commands import sync_drive as sync_drive_command
from library_sync.commands.seed_tags import ATTRIBUTES, seed_taxonomy
from library_sync.config import settings
from library_sync.connectors.google_drive.drive_service import DrivePermissionError
from library_sync.connectors.google_drive.drive_sync_service import DriveSyncService
from library_sync.database.models import Tag, TagGroup
from library_sync.models.config_models import GoogleDriveConfig
from library_sync.services.tag_service import tag_service


class TestSeedTags:
    """Test taxonomy seeding."""

    @pytest.mark.asyncio
    async def test_seed_creates_skeleton(self, session):
        """Test roots, grades and streams are created with their groups."""
        counts = await seed_taxonomy(session)

        assert counts["existing"] == 0
        assert counts["created"] > 0

        al = await tag_service.find_root_level(session, "A/L Subjects")
        grades = await tag_service.find_children(session, al.id)
        assert [g.name for g in grades] == ["Grade 12", "Grade 13"]
        assert all(g.group == TagGroup.GRADE.value for g in grades)

        streams = await tag_service.find_children(session, grades[0].id)
        assert len(streams) == 6
        assert all(s.group == TagGroup.STREAM.value for s in streams)

        assert (await tag_service.find_root_level(session, "IELTS")) is not None
        assert (await tag_service.find_by_slug(session, "english-medium")).parent_id is None

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, session):
        """Test a second seed creates nothing."""
        first = await seed_taxonomy(session)
        total = (await session.execute(select(func.count()).select_from(Tag))).scalar()

        second = await seed_taxonomy(session)

        assert second["created"] == 0
        assert second["existing"] == first["created"]
        assert (await session.execute(select(func.count()).select_from(Tag))).scalar() == total

    @pytest.mark.asyncio
    async def test_seeded_attributes_are_parentless(self, session):
        """Test every seeded attribute is a parentless facet."""
        await seed_taxonomy(session)

        for group, names in ATTRIBUTES.items():
            tags = await tag_service.get_tags(session, group=group)
            assert {t.name for t in tags} >= set(names)
            assert all(t.parent_id is None for t in tags)


class TestCheckTags:
    """Test the tag audit report."""

    @pytest.mark.asyncio
    async def test_report_groups_and_samples(self, session):
        """Test tags are grouped with NO_GROUP for unclassified tags."""
        level = await tag_service.ensure_tag(session, "A/L Subjects", TagGroup.LEVEL)
        for n in range(25):
            await tag_service.ensure_tag(session, f"Lesson {n:02d}", TagGroup.LESSON, level.id)
        await tag_service.create_user_tag(session, "Favourites")

        report = await check_tags_command.build_tag_report(session)
        text = check_tags_command.format_tag_report(report)

        assert report["NO_GROUP"] == ["Favourites"]
        assert len(report["LESSON"]) == 25
        assert "Total tags: 27" in text
        assert "LESSON: 25" in text
        assert "Lesson 19" in text
        assert "Lesson 20" not in text

    @pytest.mark.asyncio
    async def test_report_source_filter(self, session):
        """Test filtering the report by source."""
        await tag_service.ensure_tag(session, "A/L Subjects", TagGroup.LEVEL)
        await tag_service.create_user_tag(session, "Favourites")

        report = await check_tags_command.build_tag_report(session, source="SYSTEM")

        assert list(report) == ["LEVEL"]


class TestMapDrive:
    """Test the read-only folder map."""

    @pytest.fixture(autouse=True)
    def no_delay(self, monkeypatch):
        monkeypatch.setattr(
            map_drive_command,
            "drive_sync_service",
            DriveSyncService(drive_config=GoogleDriveConfig(api_delay_ms=0, max_retries=0)),
        )

    def test_describe_folder(self):
        """Test classification labels."""
        assert map_drive_command.describe_folder("Grade 12") == "GRADE (hierarchy)"
        assert map_drive_command.describe_folder("2023") == "YEAR (attribute)"
        assert map_drive_command.describe_folder("Biology") == "unclassified"

    @pytest.mark.asyncio
    async def test_folder_map(self, drive):
        """Test folders are listed with indentation and files are left out."""
        drive.add_file(drive.add_path("A/L Subjects", "Grade 12", "Biology"), "a.pdf")

        lines = await map_drive_command.build_folder_map(drive, drive.root_id, max_depth=2)

        assert lines == [
            "A/L Subjects  [LEVEL (hierarchy)]",
            "    Grade 12  [GRADE (hierarchy)]",
        ]

    @pytest.mark.asyncio
    async def test_folder_map_reports_errors(self, drive):
        """Test an unreadable folder is reported inline."""
        folder = drive.add_path("A/L Subjects")
        drive.fail("list_children", folder, DrivePermissionError("denied", 403))

        lines = await map_drive_command.build_folder_map(drive, drive.root_id, max_depth=3)

        assert lines[0] == "A/L Subjects  [LEVEL (hierarchy)]"
        assert lines[1] == "    !! denied"


class TestSyncCommand:
    """Test the sync command's exit codes."""

    @pytest.mark.asyncio
    async def test_missing_credentials_exit_code(self, monkeypatch):
        """Test the run aborts with exit code 1 without Drive credentials."""
        monkeypatch.setattr(settings, "google_client_id", None)

        exit_code = await sync_drive_command.run_sync(root_folder_id="root")

        assert exit_code == 1
