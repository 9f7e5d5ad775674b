import os
from itertools import count
from typing import Dict, List, Optional, Tuple

# Configure an in-memory database and keep real credentials out of tests
# before importing library_sync modules (singletons read these at import).
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("CONFIG_PATH", os.path.join(os.path.dirname(__file__), "no-config.yml"))
for _var in ("ROOT_FOLDER_ID", "UPLOAD_FOLDER_ID", "GOOGLE_REFRESH_TOKEN"):
    os.environ.pop(_var, None)

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from library_sync.connectors.google_drive.drive_service import (
    FOLDER_MIME_TYPE,
    DriveItem,
    DriveNotFoundError,
    DrivePage,
)
from library_sync.database import models  # noqa: F401
from library_sync.database.base import Base
from library_sync.services.database_service import enable_sqlite_savepoints


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


class FakeDrive:
    """
    In-memory Drive tree implementing the client surface the walker uses.

    Failures can be queued per (method, id): each call pops the next
    exception, so a single RateLimitError is retried and then succeeds.
    """

    def __init__(self, page_size: int = 100, root_name: str = "Library"):
        self.page_size = page_size
        self._ids = count(1)
        self.items: Dict[str, DriveItem] = {}
        self.children: Dict[str, List[str]] = {}
        self.failures: Dict[Tuple[str, str], List[Exception]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.copies: List[Tuple[str, str]] = []
        self.root_id = self._add("root", root_name, FOLDER_MIME_TYPE, None)

    def _add(self, item_id: str, name: str, mime_type: str, parent_id: Optional[str], size=None) -> str:
        self.items[item_id] = DriveItem(
            id=item_id, name=name, mime_type=mime_type, size=size,
            parents=(parent_id,) if parent_id else (),
        )
        if mime_type == FOLDER_MIME_TYPE:
            self.children.setdefault(item_id, [])
        if parent_id:
            self.children[parent_id].append(item_id)
        return item_id

    def add_folder(self, parent_id: str, name: str) -> str:
        return self._add(f"folder-{next(self._ids)}", name, FOLDER_MIME_TYPE, parent_id)

    def add_path(self, *names: str, parent_id: Optional[str] = None) -> str:
        """Create (or reuse) a chain of folders and return the deepest id."""
        current = parent_id or self.root_id
        for name in names:
            existing = [
                child for child in self.children[current]
                if self.items[child].name == name and self.items[child].mime_type == FOLDER_MIME_TYPE
            ]
            current = existing[0] if existing else self.add_folder(current, name)
        return current

    def add_file(self, parent_id: str, name: str, mime_type: str = "application/pdf",
                 size: Optional[int] = 1024, file_id: Optional[str] = None) -> str:
        return self._add(file_id or f"file-{next(self._ids)}", name, mime_type, parent_id, size)

    def link(self, item_id: str, parent_id: str) -> None:
        """Give an existing item a second parent."""
        self.children[parent_id].append(item_id)

    def move(self, item_id: str, old_parent_id: str, new_parent_id: str) -> None:
        self.children[old_parent_id].remove(item_id)
        self.children[new_parent_id].append(item_id)

    def fail(self, method: str, item_id: str, *errors: Exception) -> None:
        self.failures.setdefault((method, item_id), []).extend(errors)

    def _maybe_fail(self, method: str, item_id: str) -> None:
        self.calls.append((method, item_id))
        queued = self.failures.get((method, item_id))
        if queued:
            raise queued.pop(0)

    async def list_children(self, folder_id: str, page_token: Optional[str] = None) -> DrivePage:
        self._maybe_fail("list_children", folder_id)
        if folder_id not in self.children:
            raise DriveNotFoundError(f"Folder {folder_id} not found", 404)
        start = int(page_token or 0)
        ids = self.children[folder_id][start:start + self.page_size]
        next_start = start + self.page_size
        next_token = str(next_start) if next_start < len(self.children[folder_id]) else None
        return DrivePage(items=[self.items[i] for i in ids], next_page_token=next_token)

    async def get_file(self, file_id: str) -> DriveItem:
        self._maybe_fail("get_file", file_id)
        if file_id not in self.items:
            raise DriveNotFoundError(f"File {file_id} not found", 404)
        return self.items[file_id]

    async def copy_file(self, file_id: str, parent_id: str, name: Optional[str] = None) -> DriveItem:
        self._maybe_fail("copy_file", file_id)
        source = self.items[file_id]
        copy_id = self._add(f"copy-{next(self._ids)}", name or source.name, source.mime_type, parent_id, source.size)
        self.copies.append((file_id, copy_id))
        return self.items[copy_id]

    async def find_folder(self, parent_id: str, name: str) -> Optional[DriveItem]:
        self._maybe_fail("find_folder", parent_id)
        for child in self.children.get(parent_id, []):
            item = self.items[child]
            if item.is_folder and item.name == name:
                return item
        return None

    async def create_folder(self, parent_id: str, name: str) -> DriveItem:
        self._maybe_fail("create_folder", parent_id)
        return self.items[self.add_folder(parent_id, name)]


@pytest.fixture
def drive():
    return FakeDrive()
