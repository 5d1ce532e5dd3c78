"""Google Drive integration: OAuth2 credentials, folder listing and downloads."""

import json
import logging
from datetime import datetime
from pathlib import Path

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload

from config import settings
from src.cursor_store import atomic_write_text, format_time
from src.exceptions import (
    CredentialInvalidError,
    DownloadError,
    PersistenceError,
    ScanError,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id, name, fileExtension, size, createdTime, webViewLink, mimeType"
DOWNLOAD_CHUNK_SIZE = 8 * 1024 * 1024


# --- Credential file ---


def save_credentials(creds: Credentials, token_path: Path) -> None:
    """Serialize credentials to a file compatible with from_authorized_user_file."""
    payload = json.dumps({
        "type": "authorized_user",
        "client_id": creds.client_id,
        "client_secret": creds.client_secret,
        "refresh_token": creds.refresh_token,
    })
    try:
        atomic_write_text(token_path, payload)
    except OSError as e:
        raise PersistenceError(f"Failed to save credentials to {token_path}: {e}") from e
    logger.info("Saved Google credentials to %s", token_path)


def load_credentials(token_path: Path) -> Credentials | None:
    """Read previously authorized credentials, or None if there are none."""
    if not token_path.exists():
        return None
    try:
        return Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (ValueError, OSError) as e:
        logger.warning("Unreadable token file %s: %s", token_path, e)
        return None


def invalidate_credentials(token_path: Path) -> None:
    """Delete the token file so the next request restarts authorization."""
    try:
        token_path.unlink(missing_ok=True)
    except OSError as e:
        raise PersistenceError(f"Failed to delete token file {token_path}: {e}") from e
    logger.warning("Removed invalid Google token at %s, re-authorization required", token_path)


# --- OAuth2 web flow ---


def build_flow(state: str | None = None) -> Flow:
    """Create an OAuth2 web flow from the client secrets file."""
    return Flow.from_client_secrets_file(
        str(settings.google_client_secrets_path),
        scopes=SCOPES,
        redirect_uri=settings.oauth_redirect_uri,
        state=state,
    )


def authorization_url(flow: Flow) -> str:
    """Return the consent URL for offline Drive access."""
    url, _ = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
    )
    return url


def exchange_code(flow: Flow, code: str, token_path: Path | None = None) -> Credentials:
    """Exchange an authorization code for tokens and persist them."""
    flow.fetch_token(code=code)
    creds = flow.credentials
    save_credentials(creds, token_path or settings.google_token_path)
    return creds


# --- Per-pass session ---


class DriveSession:
    """An authorized Drive v3 client, opened once per pass.

    Refreshes expired credentials up front and persists them again if the
    refresh token rotated. A rejected refresh deletes the token file and
    raises CredentialInvalidError; an unreachable token endpoint raises
    ScanError and keeps the token.
    """

    def __init__(self, credentials: Credentials, token_path: Path, service=None):
        self.credentials = credentials
        self.token_path = token_path
        self._service = service

    @classmethod
    def open(cls, token_path: Path | None = None) -> "DriveSession":
        token_path = token_path or settings.google_token_path
        creds = load_credentials(token_path)
        if creds is None:
            raise CredentialInvalidError(f"No Google credentials at {token_path}")
        session = cls(creds, token_path)
        session.ensure_valid()
        return session

    def ensure_valid(self) -> None:
        creds = self.credentials
        if creds.valid:
            return
        previous_refresh_token = creds.refresh_token
        try:
            creds.refresh(Request())
        except RefreshError as e:
            invalidate_credentials(self.token_path)
            raise CredentialInvalidError(f"Google credentials rejected: {e}") from e
        except TransportError as e:
            raise ScanError(f"Google token endpoint unreachable: {e}") from e
        except Exception as e:
            raise ScanError(f"Could not refresh Google credentials: {e}") from e
        if creds.refresh_token and creds.refresh_token != previous_refresh_token:
            logger.info("Refresh token rotated, persisting new credentials")
            save_credentials(creds, self.token_path)

    @property
    def service(self):
        if self._service is None:
            self._service = build("drive", "v3", credentials=self.credentials, cache_discovery=False)
        return self._service

    def _credential_failure(self, e: Exception) -> CredentialInvalidError:
        invalidate_credentials(self.token_path)
        return CredentialInvalidError(f"Google credentials rejected: {e}")

    def list_recent(self, folder_id: str, after: datetime, page_size: int = 500) -> list[dict]:
        """List files created after `after` in the folder, newest first.

        Follows nextPageToken until the listing is exhausted so the caller
        always sees the complete set.

        Raises:
            CredentialInvalidError: If Google rejects the credentials.
            ScanError: On any other listing failure.
        """
        query = (
            f"'{folder_id}' in parents"
            f" and trashed = false"
            f" and mimeType != '{FOLDER_MIME_TYPE}'"
            f" and createdTime > '{format_time(after)}'"
        )
        logger.info("Querying Drive: %s", query)

        files: list[dict] = []
        page_token = None
        try:
            while True:
                result = (
                    self.service.files()
                    .list(
                        q=query,
                        orderBy="createdTime desc",
                        pageSize=page_size,
                        pageToken=page_token,
                        fields=f"nextPageToken, files({FILE_FIELDS})",
                        supportsAllDrives=True,
                        includeItemsFromAllDrives=True,
                    )
                    .execute()
                )
                files.extend(result.get("files", []))
                page_token = result.get("nextPageToken")
                if not page_token:
                    break
        except RefreshError as e:
            raise self._credential_failure(e) from e
        except HttpError as e:
            if e.resp.status == 401:
                raise self._credential_failure(e) from e
            raise ScanError(f"Drive listing failed: {e}") from e
        except Exception as e:
            raise ScanError(f"Drive listing failed: {e}") from e

        logger.info("Drive returned %d files", len(files))
        return files

    def get_start_page_token(self) -> str | None:
        """Fetch Drive's current changes start page token."""
        try:
            response = (
                self.service.changes()
                .getStartPageToken(supportsAllDrives=True)
                .execute()
            )
        except RefreshError as e:
            raise self._credential_failure(e) from e
        except HttpError as e:
            if e.resp.status == 401:
                raise self._credential_failure(e) from e
            raise ScanError(f"Failed to fetch start page token: {e}") from e
        return response.get("startPageToken")

    def download(self, file_id: str, dest: Path) -> Path:
        """Stream a file's bytes to dest.

        Raises:
            CredentialInvalidError: If Google rejects the credentials.
            DownloadError: On any other download failure.
        """
        try:
            request = self.service.files().get_media(fileId=file_id, supportsAllDrives=True)
            with open(dest, "wb") as fh:
                downloader = MediaIoBaseDownload(fh, request, chunksize=DOWNLOAD_CHUNK_SIZE)
                done = False
                while not done:
                    _, done = downloader.next_chunk()
        except RefreshError as e:
            raise self._credential_failure(e) from e
        except HttpError as e:
            if e.resp.status == 401:
                raise self._credential_failure(e) from e
            raise DownloadError(f"Drive download failed for {file_id}: {e}") from e
        except Exception as e:
            raise DownloadError(f"Drive download failed for {file_id}: {e}") from e

        logger.info("Downloaded %s (%d bytes) to %s", file_id, dest.stat().st_size, dest)
        return dest
