"""Persist the change-scan watermark between passes."""

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from src.exceptions import PersistenceError
from src.models import Cursor

logger = logging.getLogger(__name__)


def format_time(value: datetime) -> str:
    """Format a tz-aware datetime as RFC 3339 UTC with a trailing Z."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def parse_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp (as Drive returns them) into UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def atomic_write_text(path: Path, content: str) -> None:
    """Write content to path via a sibling temp file and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class CursorStore:
    """JSON file holding {continuationToken, watermarkTime}."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Cursor | None:
        """Return the saved cursor, or None on first run.

        Raises:
            PersistenceError: If the file exists but cannot be read or parsed.
        """
        if not self.path.exists():
            logger.info("No cursor at %s, first run", self.path)
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            cursor = Cursor(
                continuation_token=data.get("continuationToken"),
                watermark_time=parse_time(data["watermarkTime"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Failed to read cursor {self.path}: {e}") from e
        logger.info("Loaded cursor: watermark=%s", format_time(cursor.watermark_time))
        return cursor

    def save(self, cursor: Cursor) -> None:
        """Atomically replace the cursor file.

        Raises:
            PersistenceError: If the write fails.
        """
        payload = json.dumps({
            "continuationToken": cursor.continuation_token,
            "watermarkTime": format_time(cursor.watermark_time),
        })
        try:
            atomic_write_text(self.path, payload)
        except OSError as e:
            raise PersistenceError(f"Failed to save cursor {self.path}: {e}") from e
        logger.info("Saved cursor: watermark=%s", format_time(cursor.watermark_time))

    def clear(self) -> bool:
        """Delete the cursor file. Returns True if one existed."""
        if not self.path.exists():
            return False
        try:
            self.path.unlink()
        except OSError as e:
            raise PersistenceError(f"Failed to delete cursor {self.path}: {e}") from e
        logger.info("Cleared cursor at %s", self.path)
        return True
