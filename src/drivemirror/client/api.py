"""HTTP client for the remote file store API.

This module provides:
- DriveClient: HTTP client for a Drive v2 style REST API
- Folder and file metadata operations (find, get, insert, trash)
- Single-request media upload for small files
- Resumable session operations (create, query offset, upload chunk)

Metadata calls raise typed exceptions on failure. Resumable session calls
return the raw status code in an UploadResponse, since 308 and 5xx answers
are expected during a chunked transfer and are classified by the caller.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from drivemirror.client.http import build_http_client

if TYPE_CHECKING:
    from drivemirror.client.auth import TokenProvider
    from drivemirror.core.config import UploaderConfig

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_MIME_TYPE = "application/octet-stream"

FILES_PATH = "/drive/v2/files"
UPLOAD_PATH = "/upload/drive/v2/files"

# Status codes used by the resumable protocol
RESUME_INCOMPLETE = 308

_RANGE_RE = re.compile(r"bytes=(\d+)-(\d+)")


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


@dataclass(frozen=True)
class DriveFile:
    """File or folder metadata from the remote store."""

    id: str
    title: str
    mime_type: str
    md5_checksum: str | None = None
    parent_ids: tuple[str, ...] = field(default_factory=tuple)
    size: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriveFile:
        """Create from API response dictionary."""
        size = data.get("fileSize")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            mime_type=data.get("mimeType", DEFAULT_MIME_TYPE),
            md5_checksum=data.get("md5Checksum"),
            parent_ids=tuple(p["id"] for p in data.get("parents", []) if "id" in p),
            size=int(size) if size is not None else None,
        )

    @property
    def is_directory(self) -> bool:
        """Check if this node is a folder."""
        return self.mime_type == FOLDER_MIME_TYPE


@dataclass
class UploadResponse:
    """Raw answer of a resumable session call.

    Attributes:
        status_code: HTTP status code, or None if the request never completed.
        offset: Number of bytes the server has committed, when known.
        file: Metadata of the stored file once the upload is complete.
    """

    status_code: int | None
    offset: int | None = None
    file: DriveFile | None = None


def parse_range_header(value: str | None) -> int | None:
    """Get the committed byte count from a resumable Range header.

    Args:
        value: Range header value such as "bytes=0-1048575".

    Returns:
        Number of committed bytes (last index + 1), or None if the header
        is missing or malformed.
    """
    if not value:
        return None
    match = _RANGE_RE.search(value)
    if match is None:
        return None
    return int(match.group(2)) + 1


def escape_query_value(value: str) -> str:
    """Escape a string literal for a files query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_files_query(title: str, parent_id: str | None, mime_type: str | None = None) -> str:
    """Build the search query for non-trashed children with a given title.

    Args:
        title: Exact title to match.
        parent_id: Parent folder id, or None for the store root.
        mime_type: Restrict to this MIME type if given.

    Returns:
        Query string for the "q" parameter.
    """
    clauses = [f"title = '{escape_query_value(title)}'"]
    if mime_type is not None:
        clauses.append(f"mimeType='{escape_query_value(mime_type)}'")
    clauses.append("trashed=false")
    clauses.append(f"'{escape_query_value(parent_id or 'root')}' in parents")
    return " and ".join(clauses)


class RemoteStore(Protocol):
    """Narrow interface of the remote store used by the sync core."""

    def find_directories(self, title: str, parent_id: str | None) -> list[DriveFile]: ...

    def find_files(
        self, title: str, parent_id: str | None, mime_type: str | None = None
    ) -> list[DriveFile]: ...

    def get_file(self, file_id: str) -> DriveFile: ...

    def insert_directory(self, title: str, parent_id: str | None) -> DriveFile: ...

    def insert_file(self, title: str, parent_id: str | None, mime_type: str) -> DriveFile: ...

    def upload_content(self, file_id: str, path: Path, mime_type: str) -> DriveFile: ...

    def trash_file(self, file_id: str) -> DriveFile: ...

    def create_resumable_session(
        self,
        size: int,
        mime_type: str,
        title: str | None = None,
        parent_id: str | None = None,
        file_id: str | None = None,
    ) -> str: ...

    def query_upload(self, session_uri: str, total: int) -> UploadResponse: ...

    def upload_chunk(
        self, session_uri: str, data: bytes, start: int, total: int
    ) -> UploadResponse: ...


class DriveClient:
    """HTTP client for a Drive v2 style file store."""

    def __init__(
        self,
        config: UploaderConfig,
        tokens: TokenProvider,
        http: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Uploader configuration (API URL, proxy, timeout).
            tokens: Shared access token provider.
            http: Pre-built HTTP client. Built from the config if omitted,
                in which case the client owns it.
        """
        self._config = config
        self._tokens = tokens
        self._owns_http = http is None
        self._client = http if http is not None else build_http_client(config)

    def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_http:
            self._client.close()

    def __enter__(self) -> DriveClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": self._tokens.auth_header}
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send an authorized request, renewing the token once on 401."""
        response = self._client.request(method, url, headers=self._headers(headers), **kwargs)
        if response.status_code == 401:
            logger.info("Access token rejected, refreshing")
            if self._tokens.refresh():
                response = self._client.request(
                    method, url, headers=self._headers(headers), **kwargs
                )
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code >= 400:
            raise APIError(_error_detail(response), response.status_code)
        return response

    # === Folder and file metadata ===

    def find_directories(self, title: str, parent_id: str | None) -> list[DriveFile]:
        """List non-trashed folders with the given title under a parent.

        Args:
            title: Folder title.
            parent_id: Parent folder id, or None for the store root.

        Returns:
            Matching folders in the order the server lists them.
        """
        return self.find_files(title, parent_id, FOLDER_MIME_TYPE)

    def find_files(
        self, title: str, parent_id: str | None, mime_type: str | None = None
    ) -> list[DriveFile]:
        """List non-trashed files with the given title under a parent.

        Args:
            title: File title.
            parent_id: Parent folder id, or None for the store root.
            mime_type: Restrict to this MIME type if given.

        Returns:
            Matching files in the order the server lists them.
        """
        params: dict[str, str] = {"q": build_files_query(title, parent_id, mime_type)}
        files: list[DriveFile] = []
        while True:
            response = self._request("GET", FILES_PATH, params=params)
            data = response.json()
            files.extend(DriveFile.from_dict(item) for item in data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return files
            params["pageToken"] = page_token

    def get_file(self, file_id: str) -> DriveFile:
        """Get file metadata by id.

        Raises:
            NotFoundError: If no file has this id.
        """
        response = self._request("GET", f"{FILES_PATH}/{file_id}")
        return DriveFile.from_dict(response.json())

    def insert_directory(self, title: str, parent_id: str | None) -> DriveFile:
        """Create a folder.

        Args:
            title: Folder title.
            parent_id: Parent folder id, or None for the store root.

        Returns:
            The created folder.
        """
        return self.insert_file(title, parent_id, FOLDER_MIME_TYPE)

    def insert_file(self, title: str, parent_id: str | None, mime_type: str) -> DriveFile:
        """Create a file node without content.

        Args:
            title: File title.
            parent_id: Parent folder id, or None for the store root.
            mime_type: MIME type of the new node.

        Returns:
            The created node.
        """
        body: dict[str, Any] = {"title": title, "mimeType": mime_type}
        if parent_id is not None:
            body["parents"] = [{"id": parent_id}]
        response = self._request("POST", FILES_PATH, json=body)
        created = DriveFile.from_dict(response.json())
        logger.debug(f"Created {title!r} ({created.id})")
        return created

    def upload_content(self, file_id: str, path: Path, mime_type: str) -> DriveFile:
        """Replace the content of a file with a single media request.

        Args:
            file_id: Id of the target file.
            path: Local file to send.
            mime_type: Content type of the upload.

        Returns:
            Updated file metadata, including its checksum.
        """
        content = path.read_bytes()
        response = self._request(
            "PUT",
            f"{UPLOAD_PATH}/{file_id}",
            params={"uploadType": "media"},
            headers={"Content-Type": mime_type},
            content=content,
        )
        return DriveFile.from_dict(response.json())

    def trash_file(self, file_id: str) -> DriveFile:
        """Move a file to the trash."""
        response = self._request("POST", f"{FILES_PATH}/{file_id}/trash")
        return DriveFile.from_dict(response.json())

    # === Resumable sessions ===

    def create_resumable_session(
        self,
        size: int,
        mime_type: str,
        title: str | None = None,
        parent_id: str | None = None,
        file_id: str | None = None,
    ) -> str:
        """Open a resumable upload session.

        With a file_id the session updates that file's content, otherwise
        it creates a new file named title under parent_id.

        Args:
            size: Total number of bytes that will be sent.
            mime_type: Content type of the upload.
            title: Title of the new file.
            parent_id: Parent folder of the new file.
            file_id: Existing file to update.

        Returns:
            Session URI to send chunks to.

        Raises:
            ValueError: If neither title nor file_id is given.
            APIError: If the server refuses the session.
        """
        if file_id is None and not title:
            raise ValueError("A new resumable upload needs a title")
        headers = {
            "X-Upload-Content-Type": mime_type,
            "X-Upload-Content-Length": str(size),
        }
        body: dict[str, Any] = {"mimeType": mime_type}
        if file_id is None:
            body["title"] = title
            if parent_id is not None:
                body["parents"] = [{"id": parent_id}]
            method, url = "POST", UPLOAD_PATH
        else:
            method, url = "PUT", f"{UPLOAD_PATH}/{file_id}"
        response = self._request(
            method, url, params={"uploadType": "resumable"}, headers=headers, json=body
        )
        location = response.headers.get("Location")
        if not location:
            raise APIError("Resumable session created without a Location header", response.status_code)
        logger.debug(f"Opened resumable session for {title or file_id}")
        return location

    def query_upload(self, session_uri: str, total: int) -> UploadResponse:
        """Ask a session how many bytes it has committed.

        Args:
            session_uri: Session URI returned by create_resumable_session.
            total: Total size of the upload.

        Returns:
            Raw session answer. On 308 the offset is the committed byte
            count (0 when the server reports no range).
        """
        response = self._client.put(
            session_uri,
            headers=self._headers({"Content-Range": f"bytes */{total}"}),
            content=b"",
        )
        return _upload_response(response)

    def upload_chunk(self, session_uri: str, data: bytes, start: int, total: int) -> UploadResponse:
        """Send one chunk of a resumable upload.

        Args:
            session_uri: Session URI.
            data: Chunk content, sent at byte offset start.
            start: Offset of the first byte of data.
            total: Total size of the upload.

        Returns:
            Raw session answer.
        """
        end = start + len(data) - 1
        response = self._client.put(
            session_uri,
            headers=self._headers({"Content-Range": f"bytes {start}-{end}/{total}"}),
            content=data,
        )
        return _upload_response(response)


def _error_detail(response: httpx.Response) -> str:
    """Extract an error message from an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return f"HTTP {response.status_code}"


def _upload_response(response: httpx.Response) -> UploadResponse:
    """Convert a resumable session answer."""
    status = response.status_code
    if status == RESUME_INCOMPLETE:
        offset = parse_range_header(response.headers.get("Range"))
        return UploadResponse(status, offset=offset if offset is not None else 0)
    if status in (200, 201):
        try:
            file = DriveFile.from_dict(response.json())
        except (ValueError, KeyError):
            file = None
        return UploadResponse(status, file=file)
    return UploadResponse(status)
