"""
Tests for the catalog repository.

Covers creation defaults, dedup by external id (either column), the safe tag
merge on resync and the created/updated/unchanged actions.
"""

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from library_sync.database.models import Resource, TagGroup
from library_sync.services.catalog_service import catalog_service, is_preserved_tag
from library_sync.services.tag_service import tag_service


@pytest_asyncio.fixture
async def tree(session):
    level = await tag_service.ensure_tag(session, "A/L Subjects", TagGroup.LEVEL)
    grade = await tag_service.ensure_tag(session, "Grade 12", TagGroup.GRADE, level.id)
    subject_y = await tag_service.ensure_tag(session, "Biology", TagGroup.SUBJECT, grade.id)
    subject_z = await tag_service.ensure_tag(session, "Chemistry", TagGroup.SUBJECT, grade.id)
    medium = await tag_service.ensure_tag(session, "English Medium", TagGroup.MEDIUM)
    difficult = await tag_service.create_user_tag(session, "Difficult")
    await session.commit()
    return {
        "level": level,
        "grade": grade,
        "subject_y": subject_y,
        "subject_z": subject_z,
        "medium": medium,
        "difficult": difficult,
    }


async def _count_resources(session) -> int:
    return (await session.execute(select(func.count()).select_from(Resource))).scalar()


class TestUpsertFileResource:
    """Tests for upsert_file_resource."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, session, tree):
        resource, action = await catalog_service.upsert_file_resource(
            session,
            external_id="file-1",
            name="notes.pdf",
            mime_type="application/pdf",
            size=2048,
            hierarchy_tag_ids=[tree["grade"].id, tree["subject_y"].id],
        )

        assert action == "created"
        assert resource.title == "notes.pdf"
        assert resource.external_file_id == "file-1"
        assert resource.status == "APPROVED"
        assert resource.source == "SYSTEM"
        assert resource.uploader_id == "system-sync"
        assert resource.file_size == 2048
        assert {t.id for t in resource.tags} == {tree["grade"].id, tree["subject_y"].id}

    @pytest.mark.asyncio
    async def test_dedup_by_external_id(self, session, tree):
        tag_ids = [tree["grade"].id, tree["subject_y"].id]
        first, _ = await catalog_service.upsert_file_resource(
            session, "file-1", "notes.pdf", "application/pdf", 10, tag_ids
        )
        second, action = await catalog_service.upsert_file_resource(
            session, "file-1", "notes.pdf", "application/pdf", 10, tag_ids
        )

        assert action == "unchanged"
        assert first.id == second.id
        assert await _count_resources(session) == 1
        assert {t.id for t in second.tags} == set(tag_ids)

    @pytest.mark.asyncio
    async def test_title_refresh(self, session, tree):
        await catalog_service.upsert_file_resource(session, "file-1", "old.pdf", None, None, [tree["grade"].id])
        resource, action = await catalog_service.upsert_file_resource(
            session, "file-1", "new.pdf", None, None, [tree["grade"].id]
        )

        assert action == "updated"
        assert resource.title == "new.pdf"

    @pytest.mark.asyncio
    async def test_safe_merge_on_move(self, session, tree):
        resource, _ = await catalog_service.upsert_file_resource(
            session, "file-1", "notes.pdf", None, None, [tree["grade"].id, tree["subject_y"].id]
        )
        resource.tags.append(tree["difficult"])
        await session.flush()

        moved, action = await catalog_service.upsert_file_resource(
            session, "file-1", "notes.pdf", None, None, [tree["grade"].id, tree["subject_z"].id]
        )

        assert action == "updated"
        assert {t.id for t in moved.tags} == {
            tree["grade"].id,
            tree["subject_z"].id,
            tree["difficult"].id,
        }

    @pytest.mark.asyncio
    async def test_attribute_tags_preserved(self, session, tree):
        await catalog_service.upsert_file_resource(
            session, "file-1", "notes.pdf", None, None, [tree["subject_y"].id, tree["medium"].id]
        )

        resource, _ = await catalog_service.upsert_file_resource(
            session, "file-1", "notes.pdf", None, None, [tree["subject_z"].id]
        )

        assert {t.id for t in resource.tags} == {tree["subject_z"].id, tree["medium"].id}

    @pytest.mark.asyncio
    async def test_stale_level_root_dropped(self, session, tree):
        ol = await tag_service.ensure_tag(session, "O/L Subjects", TagGroup.LEVEL)
        await catalog_service.upsert_file_resource(session, "file-1", "a.pdf", None, None, [ol.id])

        resource, _ = await catalog_service.upsert_file_resource(
            session, "file-1", "a.pdf", None, None, [tree["level"].id, tree["grade"].id]
        )

        assert {t.id for t in resource.tags} == {tree["level"].id, tree["grade"].id}

    @pytest.mark.asyncio
    async def test_duplicate_tag_ids_collapsed(self, session, tree):
        resource, _ = await catalog_service.upsert_file_resource(
            session, "file-1", "a.pdf", None, None, [tree["grade"].id, tree["grade"].id]
        )

        assert [t.id for t in resource.tags] == [tree["grade"].id]

    @pytest.mark.asyncio
    async def test_lookup_by_original_id(self, session, tree):
        created, _ = await catalog_service.upsert_file_resource(
            session, "copy-1", "a.pdf", None, None, [tree["grade"].id], original_external_id="source-1"
        )

        found = await catalog_service.find_by_external_id(session, "source-1")
        again, action = await catalog_service.upsert_file_resource(
            session, "copy-1", "a.pdf", None, None, [tree["grade"].id], original_external_id="source-1"
        )

        assert found.id == created.id
        assert again.id == created.id
        assert action == "unchanged"
        assert created.original_external_file_id == "source-1"


class TestPreservedTags:
    """Tests for the safe-merge preservation rule."""

    @pytest.mark.asyncio
    async def test_rule(self, session, tree):
        assert is_preserved_tag(tree["difficult"]) is True
        assert is_preserved_tag(tree["medium"]) is True
        assert is_preserved_tag(tree["level"]) is False
        assert is_preserved_tag(tree["grade"]) is False
