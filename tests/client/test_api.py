"""Tests for the remote store HTTP client."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import FakeTokens
from pytest_httpx import HTTPXMock

from drivemirror.client.api import (
    FOLDER_MIME_TYPE,
    APIError,
    AuthenticationError,
    DriveClient,
    DriveFile,
    NotFoundError,
    build_files_query,
    parse_range_header,
)
from drivemirror.core.config import UploaderConfig

API = "https://drive.test"
SESSION = "https://drive.test/upload/drive/v2/files?uploadType=resumable&upload_id=xyz"


def folder_json(file_id: str = "f1", title: str = "Backups") -> dict:
    return {"id": file_id, "title": title, "mimeType": FOLDER_MIME_TYPE, "parents": [{"id": "root"}]}


def file_json(file_id: str = "x1", title: str = "a.txt", md5: str = "abc") -> dict:
    return {
        "id": file_id,
        "title": title,
        "mimeType": "text/plain",
        "md5Checksum": md5,
        "fileSize": "10",
        "parents": [{"id": "f1"}],
    }


@pytest.fixture
def tokens() -> FakeTokens:
    return FakeTokens()


@pytest.fixture
def client(tmp_path: Path, tokens: FakeTokens):  # type: ignore[no-untyped-def]
    """Create a DriveClient against a mocked API."""
    config = UploaderConfig(tmp_dir=tmp_path, api_url=API)
    with DriveClient(config, tokens) as drive_client:
        yield drive_client


class TestDriveFile:
    """Tests for DriveFile dataclass."""

    def test_from_dict(self) -> None:
        """Should create DriveFile from dictionary."""
        file = DriveFile.from_dict(file_json())

        assert file.id == "x1"
        assert file.title == "a.txt"
        assert file.mime_type == "text/plain"
        assert file.md5_checksum == "abc"
        assert file.parent_ids == ("f1",)
        assert file.size == 10
        assert file.is_directory is False

    def test_from_dict_folder(self) -> None:
        """Should recognize folders by MIME type."""
        folder = DriveFile.from_dict(folder_json())
        assert folder.is_directory is True
        assert folder.md5_checksum is None
        assert folder.size is None


class TestHelpers:
    """Tests for query and header helpers."""

    def test_parse_range_header(self) -> None:
        """Should return the committed byte count."""
        assert parse_range_header("bytes=0-1048575") == 1048576
        assert parse_range_header("bytes=0-0") == 1

    @pytest.mark.parametrize("value", [None, "", "garbage"])
    def test_parse_range_header_missing(self, value: str | None) -> None:
        """Should return None for missing or malformed headers."""
        assert parse_range_header(value) is None

    def test_build_files_query(self) -> None:
        """Should filter on title, type, trash state and parent."""
        query = build_files_query("docs", "abc", FOLDER_MIME_TYPE)
        assert query == (
            f"title = 'docs' and mimeType='{FOLDER_MIME_TYPE}' "
            "and trashed=false and 'abc' in parents"
        )

    def test_build_files_query_root_and_quotes(self) -> None:
        """Should escape quotes and default to the store root."""
        query = build_files_query("it's", None)
        assert query == "title = 'it\\'s' and trashed=false and 'root' in parents"


class TestMetadataOperations:
    """Tests for folder and file metadata calls."""

    def test_find_directories(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should query folders by title under the parent."""
        httpx_mock.add_response(method="GET", json={"items": [folder_json()]})

        folders = client.find_directories("Backups", None)

        assert [f.id for f in folders] == ["f1"]
        request = httpx_mock.get_request()
        assert request is not None
        assert request.url.path == "/drive/v2/files"
        assert request.url.params["q"] == build_files_query("Backups", None, FOLDER_MIME_TYPE)
        assert request.headers["Authorization"] == "Bearer token-0"

    def test_find_files_follows_pages(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should collect every page of results."""
        httpx_mock.add_response(
            method="GET", json={"items": [file_json("x1")], "nextPageToken": "p2"}
        )
        httpx_mock.add_response(method="GET", json={"items": [file_json("x2")]})

        files = client.find_files("a.txt", "f1", "text/plain")

        assert [f.id for f in files] == ["x1", "x2"]
        second = httpx_mock.get_requests()[1]
        assert second.url.params["pageToken"] == "p2"

    def test_get_file_not_found(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should raise NotFoundError on 404."""
        httpx_mock.add_response(url=f"{API}/drive/v2/files/missing", status_code=404)

        with pytest.raises(NotFoundError):
            client.get_file("missing")

    def test_refreshes_token_on_401(
        self, client: DriveClient, tokens: FakeTokens, httpx_mock: HTTPXMock
    ) -> None:
        """Should renew the token once and repeat the request."""
        url = f"{API}/drive/v2/files/x1"
        httpx_mock.add_response(url=url, status_code=401)
        httpx_mock.add_response(url=url, json=file_json())

        file = client.get_file("x1")

        assert file.id == "x1"
        assert tokens.refreshes == 1
        assert httpx_mock.get_requests()[1].headers["Authorization"] == "Bearer token-1"

    def test_authentication_error_after_refresh(
        self, client: DriveClient, httpx_mock: HTTPXMock
    ) -> None:
        """Should raise AuthenticationError if the new token is rejected too."""
        url = f"{API}/drive/v2/files/x1"
        httpx_mock.add_response(url=url, status_code=401)
        httpx_mock.add_response(url=url, status_code=401)

        with pytest.raises(AuthenticationError):
            client.get_file("x1")

    def test_no_retry_when_refresh_fails(
        self, tmp_path: Path, httpx_mock: HTTPXMock
    ) -> None:
        """Should not repeat the request if the token cannot be renewed."""
        config = UploaderConfig(tmp_dir=tmp_path, api_url=API)
        httpx_mock.add_response(url=f"{API}/drive/v2/files/x1", status_code=401)

        with DriveClient(config, FakeTokens(refresh_result=False)) as client:
            with pytest.raises(AuthenticationError):
                client.get_file("x1")

    def test_server_error_message(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should raise APIError carrying the server message."""
        httpx_mock.add_response(
            url=f"{API}/drive/v2/files/x1",
            status_code=503,
            json={"error": {"code": 503, "message": "Backend Error"}},
        )

        with pytest.raises(APIError, match="Backend Error") as exc_info:
            client.get_file("x1")
        assert exc_info.value.status_code == 503

    def test_insert_directory(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should post folder metadata with its parent."""
        httpx_mock.add_response(
            method="POST", url=f"{API}/drive/v2/files", json=folder_json("f2", "docs")
        )

        folder = client.insert_directory("docs", "f1")

        assert folder.id == "f2"
        body = json.loads(httpx_mock.get_request().content)  # type: ignore[union-attr]
        assert body == {"title": "docs", "mimeType": FOLDER_MIME_TYPE, "parents": [{"id": "f1"}]}

    def test_insert_at_root_has_no_parents(
        self, client: DriveClient, httpx_mock: HTTPXMock
    ) -> None:
        """Should omit parents for the store root."""
        httpx_mock.add_response(method="POST", url=f"{API}/drive/v2/files", json=folder_json())

        client.insert_directory("Backups", None)

        body = json.loads(httpx_mock.get_request().content)  # type: ignore[union-attr]
        assert "parents" not in body

    def test_upload_content(
        self, client: DriveClient, httpx_mock: HTTPXMock, tmp_path: Path
    ) -> None:
        """Should send the file content in one media request."""
        path = tmp_path / "a.txt"
        path.write_bytes(b"0123456789")
        httpx_mock.add_response(
            method="PUT",
            url=f"{API}/upload/drive/v2/files/x1?uploadType=media",
            json=file_json(),
        )

        file = client.upload_content("x1", path, "text/plain")

        assert file.md5_checksum == "abc"
        request = httpx_mock.get_request()
        assert request is not None
        assert request.content == b"0123456789"
        assert request.headers["Content-Type"] == "text/plain"

    def test_trash_file(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should post to the trash endpoint."""
        httpx_mock.add_response(
            method="POST", url=f"{API}/drive/v2/files/x1/trash", json=file_json()
        )

        assert client.trash_file("x1").id == "x1"


class TestResumableOperations:
    """Tests for resumable session calls."""

    def test_create_session_for_new_file(
        self, client: DriveClient, httpx_mock: HTTPXMock
    ) -> None:
        """Should return the session URI from the Location header."""
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/upload/drive/v2/files?uploadType=resumable",
            headers={"Location": SESSION},
        )

        uri = client.create_resumable_session(1000, "application/zip", title="big.zip", parent_id="f1")

        assert uri == SESSION
        request = httpx_mock.get_request()
        assert request is not None
        assert request.headers["X-Upload-Content-Type"] == "application/zip"
        assert request.headers["X-Upload-Content-Length"] == "1000"
        body = json.loads(request.content)
        assert body["title"] == "big.zip"
        assert body["parents"] == [{"id": "f1"}]

    def test_create_session_for_update(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should open an update session with PUT on the file."""
        httpx_mock.add_response(
            method="PUT",
            url=f"{API}/upload/drive/v2/files/x1?uploadType=resumable",
            headers={"Location": SESSION},
        )

        assert client.create_resumable_session(1000, "text/plain", file_id="x1") == SESSION

    def test_create_session_without_location(
        self, client: DriveClient, httpx_mock: HTTPXMock
    ) -> None:
        """Should raise APIError if the server gives no session URI."""
        httpx_mock.add_response(method="POST", url=f"{API}/upload/drive/v2/files?uploadType=resumable")

        with pytest.raises(APIError, match="Location"):
            client.create_resumable_session(1000, "text/plain", title="a.txt")

    def test_create_session_needs_title(self, client: DriveClient) -> None:
        """Should refuse a new upload without title."""
        with pytest.raises(ValueError):
            client.create_resumable_session(1000, "text/plain")

    def test_query_upload_incomplete(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should report the committed offset of an incomplete session."""
        httpx_mock.add_response(
            method="PUT", url=SESSION, status_code=308, headers={"Range": "bytes=0-524287"}
        )

        response = client.query_upload(SESSION, 1000000)

        assert response.status_code == 308
        assert response.offset == 524288
        request = httpx_mock.get_request()
        assert request is not None
        assert request.headers["Content-Range"] == "bytes */1000000"
        assert request.content == b""

    def test_query_upload_nothing_committed(
        self, client: DriveClient, httpx_mock: HTTPXMock
    ) -> None:
        """Should report offset 0 when the server sends no Range."""
        httpx_mock.add_response(method="PUT", url=SESSION, status_code=308)

        assert client.query_upload(SESSION, 1000).offset == 0

    def test_query_upload_complete(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should return the stored file of a completed session."""
        httpx_mock.add_response(method="PUT", url=SESSION, status_code=200, json=file_json())

        response = client.query_upload(SESSION, 10)

        assert response.status_code == 200
        assert response.file is not None
        assert response.file.md5_checksum == "abc"

    def test_query_upload_raw_status(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should not raise on error statuses."""
        httpx_mock.add_response(method="PUT", url=SESSION, status_code=404)

        assert client.query_upload(SESSION, 10).status_code == 404

    def test_upload_chunk(self, client: DriveClient, httpx_mock: HTTPXMock) -> None:
        """Should send the byte range of the chunk."""
        httpx_mock.add_response(
            method="PUT", url=SESSION, status_code=308, headers={"Range": "bytes=0-9"}
        )

        response = client.upload_chunk(SESSION, b"0123456789", 0, 100)

        assert response.offset == 10
        request = httpx_mock.get_request()
        assert request is not None
        assert request.headers["Content-Range"] == "bytes 0-9/100"
        assert request.content == b"0123456789"
