"""Detect newly uploaded recordings in the watched Drive folder."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import PurePosixPath
from typing import Callable

from src.cursor_store import format_time, parse_time
from src.models import CandidateItem, Cursor

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


@dataclass
class ScanResult:
    """Items to process (newest first) and the cursor to commit afterwards."""

    items: list[CandidateItem]
    cursor: Cursor

    @property
    def empty(self) -> bool:
        return not self.items


def to_candidate(file: dict) -> CandidateItem:
    """Build a CandidateItem from a Drive files resource."""
    name = file.get("name", "")
    extension = file.get("fileExtension") or PurePosixPath(name).suffix.lstrip(".")
    file_id = file["id"]
    return CandidateItem(
        id=file_id,
        name=name,
        extension=extension.lower(),
        size_bytes=int(file.get("size") or 0),
        created_time=parse_time(file["createdTime"]),
        download_ref=file_id,
        source_url=file.get("webViewLink") or f"https://drive.google.com/file/d/{file_id}/view",
    )


class ChangeScanner:
    """Query the provider for recordings created after the cursor's watermark."""

    def __init__(
        self,
        drive,
        folder_id: str,
        supported_extensions: set[str],
        max_size_bytes: int,
        page_size: int = DEFAULT_PAGE_SIZE,
        already_processed: Callable[[str], bool] | None = None,
    ):
        self.drive = drive
        self.folder_id = folder_id
        self.supported_extensions = {e.lower().lstrip(".") for e in supported_extensions}
        self.max_size_bytes = max_size_bytes
        self.page_size = page_size
        self.already_processed = already_processed or (lambda item_id: False)

    def initial_cursor(self, lookback_hours: int = 0, now: datetime | None = None) -> Cursor:
        """Derive the first cursor: provider start token plus a lookback watermark."""
        now = now or datetime.now(UTC)
        token = self.drive.get_start_page_token()
        logger.info("First run: start page token=%s, lookback=%dh", token, lookback_hours)
        return Cursor(continuation_token=token, watermark_time=now - timedelta(hours=lookback_hours))

    def _accepts(self, item: CandidateItem) -> bool:
        if item.extension not in self.supported_extensions:
            logger.info("Skipping %s: unsupported type .%s", item.name, item.extension)
            return False
        if item.size_bytes >= self.max_size_bytes:
            logger.info("Skipping %s: %d bytes exceeds limit", item.name, item.size_bytes)
            return False
        return True

    def scan(self, cursor: Cursor, now: datetime | None = None) -> ScanResult:
        """List the complete batch newer than the watermark.

        The new watermark is the creation time of the oldest item in the
        batch, or the scan start time when the batch is empty. Items already
        published in an earlier pass are not part of the batch.

        Raises:
            CredentialInvalidError: If the provider rejects the credentials.
            ScanError: On any other provider failure.
        """
        # Captured before the query so items created while it runs are not skipped.
        started = now or datetime.now(UTC)

        files = self.drive.list_recent(self.folder_id, cursor.watermark_time, self.page_size)
        batch = [
            item for item in (to_candidate(f) for f in files)
            if item.created_time > cursor.watermark_time and not self.already_processed(item.id)
        ]
        batch.sort(key=lambda item: item.created_time, reverse=True)

        if not batch:
            new_cursor = cursor.advance(started)
            logger.info("No new recordings; watermark -> %s", format_time(new_cursor.watermark_time))
            return ScanResult(items=[], cursor=new_cursor)

        oldest = batch[-1].created_time
        new_cursor = cursor.advance(oldest)
        items = [item for item in batch if self._accepts(item)]
        logger.info(
            "Scan found %d new files (%d processable); watermark -> %s",
            len(batch), len(items), format_time(new_cursor.watermark_time),
        )
        return ScanResult(items=items, cursor=new_cursor)
