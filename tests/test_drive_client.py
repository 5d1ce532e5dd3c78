"""Tests for drive_client module."""

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from src.drive_client import DriveSession, save_credentials
from src.exceptions import CredentialInvalidError, DownloadError, ScanError


def _http_error(status: int) -> HttpError:
    return HttpError(MagicMock(status=status, reason="error"), b"{}")


def _creds(valid=True, refresh_token="refresh-1"):
    creds = MagicMock()
    creds.valid = valid
    creds.client_id = "client-id"
    creds.client_secret = "client-secret"
    creds.refresh_token = refresh_token
    return creds


@pytest.fixture
def token_path(tmp_path):
    path = tmp_path / "token.json"
    path.write_text("{}")
    return path


def test_save_credentials_writes_authorized_user_file(tmp_path):
    path = tmp_path / "token.json"
    save_credentials(_creds(), path)

    data = json.loads(path.read_text())
    assert data == {
        "type": "authorized_user",
        "client_id": "client-id",
        "client_secret": "client-secret",
        "refresh_token": "refresh-1",
    }


def test_open_without_token_requires_auth(tmp_path):
    with pytest.raises(CredentialInvalidError, match="No Google credentials"):
        DriveSession.open(tmp_path / "missing.json")


class TestEnsureValid:
    """Tests for credential refresh at the start of a pass."""

    def test_valid_credentials_are_left_alone(self, token_path):
        creds = _creds(valid=True)
        DriveSession(creds, token_path).ensure_valid()
        creds.refresh.assert_not_called()

    def test_refresh_error_deletes_token(self, token_path):
        creds = _creds(valid=False)
        creds.refresh.side_effect = RefreshError("invalid_grant: Token has been expired or revoked.")

        with pytest.raises(CredentialInvalidError, match="invalid_grant"):
            DriveSession(creds, token_path).ensure_valid()
        assert not token_path.exists()

    def test_unreachable_token_endpoint_keeps_token(self, token_path):
        creds = _creds(valid=False)
        creds.refresh.side_effect = TransportError("dns failure")

        with pytest.raises(ScanError, match="unreachable"):
            DriveSession(creds, token_path).ensure_valid()
        assert token_path.exists()

    def test_rotated_refresh_token_is_persisted(self, token_path):
        creds = _creds(valid=False)

        def rotate(request):
            creds.refresh_token = "refresh-2"

        creds.refresh.side_effect = rotate
        DriveSession(creds, token_path).ensure_valid()

        assert json.loads(token_path.read_text())["refresh_token"] == "refresh-2"

    def test_unchanged_refresh_token_is_not_rewritten(self, token_path):
        creds = _creds(valid=False)
        DriveSession(creds, token_path).ensure_valid()
        assert token_path.read_text() == "{}"


class TestListRecent:
    """Tests for the folder listing query."""

    def _session(self, token_path, pages=None, error=None):
        service = MagicMock()
        execute = service.files.return_value.list.return_value.execute
        if error:
            execute.side_effect = error
        else:
            execute.side_effect = pages
        return DriveSession(_creds(), token_path, service=service), service

    def test_drains_all_pages(self, token_path):
        pages = [
            {"files": [{"id": "a"}, {"id": "b"}], "nextPageToken": "p2"},
            {"files": [{"id": "c"}]},
        ]
        session, service = self._session(token_path, pages=pages)

        files = session.list_recent("folder-1", datetime(2099, 3, 15, 12, 0, tzinfo=UTC), page_size=2)

        assert [f["id"] for f in files] == ["a", "b", "c"]
        calls = service.files.return_value.list.call_args_list
        assert calls[0].kwargs["pageToken"] is None
        assert calls[1].kwargs["pageToken"] == "p2"

    def test_query_filters_folder_and_time(self, token_path):
        session, service = self._session(token_path, pages=[{"files": []}])
        session.list_recent("folder-1", datetime(2099, 3, 15, 12, 0, tzinfo=UTC))

        kwargs = service.files.return_value.list.call_args.kwargs
        assert "'folder-1' in parents" in kwargs["q"]
        assert "trashed = false" in kwargs["q"]
        assert "createdTime > '2099-03-15T12:00:00.000Z'" in kwargs["q"]
        assert kwargs["orderBy"] == "createdTime desc"
        assert kwargs["supportsAllDrives"] is True

    def test_server_error_is_scan_error(self, token_path):
        session, _ = self._session(token_path, error=_http_error(500))
        with pytest.raises(ScanError):
            session.list_recent("folder-1", datetime(2099, 3, 15, tzinfo=UTC))
        assert token_path.exists()

    def test_unauthorized_invalidates_credentials(self, token_path):
        session, _ = self._session(token_path, error=_http_error(401))
        with pytest.raises(CredentialInvalidError):
            session.list_recent("folder-1", datetime(2099, 3, 15, tzinfo=UTC))
        assert not token_path.exists()

    def test_refresh_error_invalidates_credentials(self, token_path):
        session, _ = self._session(token_path, error=RefreshError("invalid_grant"))
        with pytest.raises(CredentialInvalidError):
            session.list_recent("folder-1", datetime(2099, 3, 15, tzinfo=UTC))
        assert not token_path.exists()


def test_get_start_page_token(token_path):
    service = MagicMock()
    service.changes.return_value.getStartPageToken.return_value.execute.return_value = {
        "startPageToken": "tok-9"
    }
    assert DriveSession(_creds(), token_path, service=service).get_start_page_token() == "tok-9"


class TestDownload:
    """Tests for streaming downloads."""

    def test_download_writes_chunks(self, token_path, tmp_path):
        dest = tmp_path / "recording.m4a"

        class FakeDownloader:
            def __init__(self, fh, request, chunksize):
                self.fh = fh

            def next_chunk(self):
                self.fh.write(b"audio bytes")
                return None, True

        with patch("src.drive_client.MediaIoBaseDownload", FakeDownloader):
            DriveSession(_creds(), token_path, service=MagicMock()).download("file-1", dest)

        assert dest.read_bytes() == b"audio bytes"

    def test_http_error_is_download_error(self, token_path, tmp_path):
        downloader = MagicMock()
        downloader.return_value.next_chunk.side_effect = _http_error(404)

        with patch("src.drive_client.MediaIoBaseDownload", downloader):
            with pytest.raises(DownloadError):
                DriveSession(_creds(), token_path, service=MagicMock()).download(
                    "file-1", tmp_path / "recording.m4a"
                )
        assert token_path.exists()

    def test_unauthorized_download_invalidates_credentials(self, token_path, tmp_path):
        downloader = MagicMock()
        downloader.return_value.next_chunk.side_effect = _http_error(401)

        with patch("src.drive_client.MediaIoBaseDownload", downloader):
            with pytest.raises(CredentialInvalidError):
                DriveSession(_creds(), token_path, service=MagicMock()).download(
                    "file-1", tmp_path / "recording.m4a"
                )
        assert not token_path.exists()
