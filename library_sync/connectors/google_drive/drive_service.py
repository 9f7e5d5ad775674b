"""
Google Drive v3 client for the library sync.

Thin async wrapper over the Drive REST API using httpx. Each method performs a
single logical call: it refreshes the OAuth token when needed (and once more on
a 401), and maps HTTP/transport failures onto a small exception taxonomy so
the walker can tell "retry later" from "skip this item":

    DriveError
    ├── TransientDriveError      timeouts, connection failures, 5xx
    │   └── RateLimitError       429, 403 rateLimitExceeded/userRateLimitExceeded
    ├── PermanentDriveError
    │   ├── DriveNotFoundError   404
    │   └── DrivePermissionError 403 (other reasons)
    └── DriveAuthError           token could not be obtained

Retrying is the caller's decision; this module never sleeps.

Usage:
    async with GoogleDriveClient.from_settings() as drive:
        page = await drive.list_children(folder_id)
        for item in page.items:
            ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ...config import settings
from ...models.config_models import GoogleDriveConfig
from ...services.config_loader import config_loader

logger = logging.getLogger("library_sync.google_drive")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
ITEM_FIELDS = "id, name, mimeType, size, parents"
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


# =============================================================================
# EXCEPTIONS
# =============================================================================

class DriveError(Exception):
    """Base class for Drive client failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientDriveError(DriveError):
    """Failure that may succeed if the same call is retried."""


class RateLimitError(TransientDriveError):
    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class PermanentDriveError(DriveError):
    """Failure that retrying will not fix."""


class DriveNotFoundError(PermanentDriveError):
    pass


class DrivePermissionError(PermanentDriveError):
    pass


class DriveAuthError(DriveError):
    """No valid access token could be obtained."""


# =============================================================================
# DATA
# =============================================================================

@dataclass(frozen=True)
class DriveItem:
    id: str
    name: str
    mime_type: str
    size: Optional[int] = None
    parents: tuple = ()

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DriveItem":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            mime_type=data.get("mimeType") or "",
            size=_parse_size(data.get("size")),
            parents=tuple(data.get("parents") or ()),
        )


@dataclass
class DrivePage:
    items: List[DriveItem] = field(default_factory=list)
    next_page_token: Optional[str] = None


def _parse_size(value: Any) -> Optional[int]:
    # Drive reports size as a string and omits it for native documents
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

class TokenManager:
    """
    Manages Google OAuth2 access tokens obtained from a refresh token.

    Tokens are refreshed proactively shortly before they expire, or reactively
    when the API answers 401.
    """

    # Refresh this many seconds before the reported expiry
    EXPIRY_MARGIN_SECONDS = 300

    def __init__(self, client_id: str, client_secret: str, refresh_token: str, token_url: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token_value = refresh_token
        self.token_url = token_url
        self._token: Optional[str] = None
        self._expires_at: float = 0
        self._refresh_count = 0

    @property
    def token(self) -> Optional[str]:
        return self._token

    def is_token_expired(self) -> bool:
        if not self._token:
            return True
        return time.time() >= self._expires_at - self.EXPIRY_MARGIN_SECONDS

    async def get_valid_token(self, client: httpx.AsyncClient) -> str:
        if self.is_token_expired():
            await self.refresh_token(client)
        return self._token

    async def refresh_token(self, client: httpx.AsyncClient) -> str:
        """
        Exchange the refresh token for a new access token.

        Raises:
            DriveAuthError: If the token endpoint rejects the request or
                returns no access token
        """
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token_value,
            "grant_type": "refresh_token",
        }
        try:
            token_resp = await client.post(self.token_url, data=payload)
            token_resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DriveAuthError(
                f"Token refresh failed with HTTP {e.response.status_code}", e.response.status_code
            ) from e
        except httpx.TransportError as e:
            raise DriveAuthError(f"Token refresh failed: {e}") from e

        body = token_resp.json()
        self._token = body.get("access_token")
        if not self._token:
            raise DriveAuthError("No access_token returned from Google OAuth endpoint.")

        self._expires_at = time.time() + float(body.get("expires_in", 3600))
        self._refresh_count += 1
        if self._refresh_count > 1:
            logger.info(f"Refreshed Google Drive token (refresh #{self._refresh_count})")
        return self._token

    def get_headers(self) -> Dict[str, str]:
        if not self._token:
            raise DriveAuthError("Token not initialized - call get_valid_token() first")
        return {"Authorization": f"Bearer {self._token}"}


# =============================================================================
# CLIENT
# =============================================================================

class GoogleDriveClient:
    """
    Async Google Drive client.

    Use as an async context manager so the underlying httpx client is closed:

        async with GoogleDriveClient(...) as drive:
            ...
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        config: Optional[GoogleDriveConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or GoogleDriveConfig()
        self.token_manager = TokenManager(client_id, client_secret, refresh_token, self.config.token_url)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, config: Optional[GoogleDriveConfig] = None) -> "GoogleDriveClient":
        """
        Build a client from environment settings and config.yml.

        Raises:
            DriveAuthError: If any OAuth credential is missing
        """
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLIENT_ID", settings.google_client_id),
                ("GOOGLE_CLIENT_SECRET", settings.google_client_secret),
                ("GOOGLE_REFRESH_TOKEN", settings.google_refresh_token),
            )
            if not value
        ]
        if missing:
            raise DriveAuthError(f"Missing Google Drive credentials: {', '.join(missing)}")

        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            refresh_token=settings.google_refresh_token,
            config=config or config_loader.get_google_drive_config(),
        )

    async def __aenter__(self) -> "GoogleDriveClient":
        self._client = httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GoogleDriveClient used outside of 'async with'")
        return self._client

    # -------------------------------------------------------------------------
    # Request plumbing
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.config.api_base_url.rstrip('/')}/{path.lstrip('/')}"
        await self.token_manager.get_valid_token(self.client)

        refreshed = False
        while True:
            try:
                response = await self.client.request(
                    method, url, params=params, json=json, headers=self.token_manager.get_headers()
                )
            except httpx.TimeoutException as e:
                raise TransientDriveError(f"Timeout calling Drive {method} {path}: {e}") from e
            except httpx.TransportError as e:
                raise TransientDriveError(f"Network error calling Drive {method} {path}: {e}") from e

            if response.status_code == 401 and not refreshed:
                logger.warning("Received 401 Unauthorized - refreshing token...")
                await self.token_manager.refresh_token(self.client)
                refreshed = True
                continue

            if response.is_success:
                return response.json() if response.content else {}

            raise self._classify_error(response, f"{method} {path}")

    @staticmethod
    def _error_reason(response: httpx.Response) -> Optional[str]:
        try:
            error = response.json().get("error", {})
        except ValueError:
            return None
        if not isinstance(error, dict):
            return None
        for detail in error.get("errors") or []:
            if isinstance(detail, dict) and detail.get("reason"):
                return detail["reason"]
        return error.get("status")

    def _classify_error(self, response: httpx.Response, call: str) -> DriveError:
        status = response.status_code
        reason = self._error_reason(response)
        message = f"Drive {call} failed with HTTP {status}" + (f" ({reason})" if reason else "")

        if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS):
            retry_after = response.headers.get("Retry-After")
            try:
                retry_after_seconds = float(retry_after) if retry_after is not None else None
            except ValueError:
                retry_after_seconds = None
            return RateLimitError(message, status, retry_after_seconds)
        if status == 401:
            return DriveAuthError(message, status)
        if status == 403:
            return DrivePermissionError(message, status)
        if status == 404:
            return DriveNotFoundError(message, status)
        if status >= 500:
            return TransientDriveError(message, status)
        return PermanentDriveError(message, status)

    # -------------------------------------------------------------------------
    # API operations
    # -------------------------------------------------------------------------

    async def list_children(self, folder_id: str, page_token: Optional[str] = None) -> DrivePage:
        """List one page of the non-trashed children of a folder."""
        params = {
            "q": f"'{_escape_query_value(folder_id)}' in parents and trashed = false",
            "fields": f"nextPageToken, files({ITEM_FIELDS})",
            "pageSize": self.config.page_size,
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        if page_token:
            params["pageToken"] = page_token

        data = await self._request("GET", "files", params=params)
        return DrivePage(
            items=[DriveItem.from_api(f) for f in data.get("files", [])],
            next_page_token=data.get("nextPageToken"),
        )

    async def get_file(self, file_id: str) -> DriveItem:
        data = await self._request(
            "GET", f"files/{file_id}", params={"fields": ITEM_FIELDS, "supportsAllDrives": "true"}
        )
        return DriveItem.from_api(data)

    async def copy_file(self, file_id: str, parent_id: str, name: Optional[str] = None) -> DriveItem:
        """Copy a file into parent_id, keeping its name unless one is given."""
        body: Dict[str, Any] = {"parents": [parent_id]}
        if name:
            body["name"] = name
        data = await self._request(
            "POST",
            f"files/{file_id}/copy",
            params={"fields": ITEM_FIELDS, "supportsAllDrives": "true"},
            json=body,
        )
        return DriveItem.from_api(data)

    async def find_folder(self, parent_id: str, name: str) -> Optional[DriveItem]:
        params = {
            "q": (
                f"'{_escape_query_value(parent_id)}' in parents and "
                f"name = '{_escape_query_value(name)}' and "
                f"mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
            ),
            "fields": f"files({ITEM_FIELDS})",
            "pageSize": 1,
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        data = await self._request("GET", "files", params=params)
        files = data.get("files", [])
        return DriveItem.from_api(files[0]) if files else None

    async def create_folder(self, parent_id: str, name: str) -> DriveItem:
        data = await self._request(
            "POST",
            "files",
            params={"fields": ITEM_FIELDS, "supportsAllDrives": "true"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        logger.info(f"Created Drive folder '{name}' ({data.get('id')}) under {parent_id}")
        return DriveItem.from_api(data)
