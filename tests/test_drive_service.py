"""
Tests for the Google Drive HTTP client.

Requests are served by httpx.MockTransport so token refresh, query shape and
error classification can be checked without network access.
"""

import json
from typing import Callable, List

import httpx
import pytest

from library_sync.config import settings
from library_sync.connectors.google_drive.drive_service import (
    FOLDER_MIME_TYPE,
    DriveAuthError,
    DriveItem,
    DriveNotFoundError,
    DrivePermissionError,
    GoogleDriveClient,
    PermanentDriveError,
    RateLimitError,
    TransientDriveError,
)
from library_sync.models.config_models import GoogleDriveConfig

TOKEN_URL = "https://oauth2.googleapis.com/token"


def token_response(access_token: str = "access-1", expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(200, json={"access_token": access_token, "expires_in": expires_in})


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> GoogleDriveClient:
    return GoogleDriveClient(
        client_id="client",
        client_secret="secret",
        refresh_token="refresh",
        config=GoogleDriveConfig(page_size=50),
        transport=httpx.MockTransport(handler),
    )


class Recorder:
    """Collects requests and answers API calls with a canned function."""

    def __init__(self, api: Callable[[httpx.Request], httpx.Response]):
        self.api = api
        self.requests: List[httpx.Request] = []
        self.token_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_URL:
            self.token_calls += 1
            return token_response(f"access-{self.token_calls}")
        return self.api(request)

    @property
    def api_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url) != TOKEN_URL]


def error_response(status: int, reason: str = None, headers=None) -> httpx.Response:
    body = {"error": {"code": status, "message": "error"}}
    if reason:
        body["error"]["errors"] = [{"reason": reason}]
    return httpx.Response(status, json=body, headers=headers or {})


class TestDriveItem:
    """Tests for response parsing."""

    def test_from_api(self):
        item = DriveItem.from_api(
            {"id": "abc", "name": "notes.pdf", "mimeType": "application/pdf", "size": "2048", "parents": ["p"]}
        )
        assert item.size == 2048
        assert item.parents == ("p",)
        assert item.is_folder is False

    def test_native_document_without_size(self):
        item = DriveItem.from_api({"id": "doc", "name": "Doc", "mimeType": "application/vnd.google-apps.document"})
        assert item.size is None

    def test_folder(self):
        assert DriveItem.from_api({"id": "f", "name": "Grade 12", "mimeType": FOLDER_MIME_TYPE}).is_folder


class TestListChildren:
    """Tests for folder listing."""

    @pytest.mark.asyncio
    async def test_query_and_paging(self):
        def api(request):
            return httpx.Response(200, json={
                "files": [
                    {"id": "1", "name": "Grade 12", "mimeType": FOLDER_MIME_TYPE},
                    {"id": "2", "name": "a.pdf", "mimeType": "application/pdf", "size": "10"},
                ],
                "nextPageToken": "next",
            })

        recorder = Recorder(api)
        async with make_client(recorder) as drive:
            page = await drive.list_children("folder'1", page_token="tok")

        request = recorder.api_requests[0]
        assert request.method == "GET"
        assert request.url.params["q"] == "'folder\\'1' in parents and trashed = false"
        assert request.url.params["pageSize"] == "50"
        assert request.url.params["pageToken"] == "tok"
        assert request.headers["Authorization"] == "Bearer access-1"
        assert [item.id for item in page.items] == ["1", "2"]
        assert page.next_page_token == "next"

    @pytest.mark.asyncio
    async def test_token_reused(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={"files": []}))
        async with make_client(recorder) as drive:
            await drive.list_children("a")
            await drive.list_children("b")

        assert recorder.token_calls == 1
        assert len(recorder.api_requests) == 2


class TestTokenRefresh:
    """Tests for 401 handling."""

    @pytest.mark.asyncio
    async def test_refresh_once_on_401(self):
        def api(request):
            if request.headers["Authorization"] == "Bearer access-1":
                return error_response(401)
            return httpx.Response(200, json={"id": "f", "name": "Root", "mimeType": FOLDER_MIME_TYPE})

        recorder = Recorder(api)
        async with make_client(recorder) as drive:
            item = await drive.get_file("f")

        assert item.name == "Root"
        assert recorder.token_calls == 2

    @pytest.mark.asyncio
    async def test_second_401_is_auth_error(self):
        recorder = Recorder(lambda request: error_response(401))
        async with make_client(recorder) as drive:
            with pytest.raises(DriveAuthError):
                await drive.get_file("f")

        assert recorder.token_calls == 2

    @pytest.mark.asyncio
    async def test_token_endpoint_rejects(self):
        def handler(request):
            if str(request.url) == TOKEN_URL:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={})

        async with make_client(handler) as drive:
            with pytest.raises(DriveAuthError):
                await drive.get_file("f")

    def test_from_settings_requires_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "google_client_id", "client")
        monkeypatch.setattr(settings, "google_refresh_token", None)

        with pytest.raises(DriveAuthError, match="GOOGLE_REFRESH_TOKEN"):
            GoogleDriveClient.from_settings()


class TestErrorClassification:
    """HTTP failures map onto transient vs permanent errors."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response,expected", [
        (error_response(429), RateLimitError),
        (error_response(403, "rateLimitExceeded"), RateLimitError),
        (error_response(403, "userRateLimitExceeded"), RateLimitError),
        (error_response(403, "insufficientFilePermissions"), DrivePermissionError),
        (error_response(404, "notFound"), DriveNotFoundError),
        (error_response(500), TransientDriveError),
        (error_response(503), TransientDriveError),
        (error_response(400, "badRequest"), PermanentDriveError),
    ])
    async def test_status_mapping(self, response, expected):
        async with make_client(Recorder(lambda request: response)) as drive:
            with pytest.raises(expected) as exc_info:
                await drive.get_file("f")

        assert exc_info.value.status_code == response.status_code

    @pytest.mark.asyncio
    async def test_not_found_is_permanent(self):
        async with make_client(Recorder(lambda request: error_response(404))) as drive:
            with pytest.raises(PermanentDriveError):
                await drive.get_file("missing")

    @pytest.mark.asyncio
    async def test_retry_after_header(self):
        response = error_response(429, headers={"Retry-After": "30"})
        async with make_client(Recorder(lambda request: response)) as drive:
            with pytest.raises(RateLimitError) as exc_info:
                await drive.list_children("f")

        assert exc_info.value.retry_after == 30.0

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def api(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_client(Recorder(api)) as drive:
            with pytest.raises(TransientDriveError):
                await drive.list_children("f")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def api(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(Recorder(api)) as drive:
            with pytest.raises(TransientDriveError):
                await drive.get_file("f")


class TestWriteOperations:
    """Tests for copy and folder creation used by copy mode."""

    @pytest.mark.asyncio
    async def test_copy_file(self):
        def api(request):
            return httpx.Response(200, json={
                "id": "copy", "name": "a.pdf", "mimeType": "application/pdf", "parents": ["dest"],
            })

        recorder = Recorder(api)
        async with make_client(recorder) as drive:
            item = await drive.copy_file("src", "dest", "a.pdf")

        request = recorder.api_requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/files/src/copy")
        assert json.loads(request.content) == {"parents": ["dest"], "name": "a.pdf"}
        assert item.id == "copy"

    @pytest.mark.asyncio
    async def test_find_folder(self):
        def api(request):
            if "Grade 12" in request.url.params["q"]:
                return httpx.Response(200, json={"files": [{"id": "g12", "name": "Grade 12", "mimeType": FOLDER_MIME_TYPE}]})
            return httpx.Response(200, json={"files": []})

        async with make_client(Recorder(api)) as drive:
            found = await drive.find_folder("dest", "Grade 12")
            missing = await drive.find_folder("dest", "Grade 13")

        assert found.id == "g12"
        assert missing is None

    @pytest.mark.asyncio
    async def test_create_folder(self):
        def api(request):
            body = json.loads(request.content)
            return httpx.Response(200, json={"id": "new", "name": body["name"], "mimeType": body["mimeType"]})

        async with make_client(Recorder(api)) as drive:
            folder = await drive.create_folder("dest", "A/L Subjects")

        assert folder.is_folder
        assert folder.name == "A/L Subjects"

    def test_client_requires_context(self):
        drive = GoogleDriveClient("client", "secret", "refresh")
        with pytest.raises(RuntimeError):
            drive.client
