"""Per-recording pipeline: fetch → transcribe → clean → summarize → repair → publish."""

import logging
import re
import shutil
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Callable, Iterator

from src import llm_client
from src.exceptions import (
    DownloadError,
    ItemError,
    PassFatalError,
    PublishError,
    SummarizationError,
    TranscriptionError,
)
from src.models import CandidateItem, ItemOutcome, SummaryRecord
from src.prompt import build_instruction, response_schema
from src.response_repair import repair
from src.transcriber import clean_transcript, split_sentences

logger = logging.getLogger(__name__)

STAGING_STEM = "recording"


def format_size(size_bytes: int) -> str:
    """Human-readable size label, e.g. '12.3 MB'."""
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def slot_name(item: CandidateItem) -> str:
    return re.sub(r"[^A-Za-z0-9_-]", "_", item.id) or "item"


@contextmanager
def staging_slot(staging_dir: Path, item: CandidateItem) -> Iterator[Path]:
    """A per-item working directory, removed on every exit path."""
    slot = staging_dir / slot_name(item)
    try:
        if slot.exists():
            shutil.rmtree(slot)
        slot.mkdir(parents=True)
    except OSError as e:
        raise DownloadError(f"Cannot prepare staging slot {slot}: {e}") from e
    try:
        yield slot
    finally:
        try:
            shutil.rmtree(slot)
        except OSError as e:
            logger.warning("Failed to remove staging slot %s: %s", slot, e)


class ItemPipeline:
    """Run candidate items through the pipeline one at a time.

    Each step wraps its own failures in an ItemError subclass; those are
    caught at the item boundary so one bad recording never stops the batch.
    PassFatalError (e.g. revoked credentials during a download) propagates.
    """

    def __init__(
        self,
        drive,
        transcriber,
        publisher,
        staging_dir: Path,
        tag: str = "",
        complete: Callable[..., str] = llm_client.complete,
        schema_constrained: bool = True,
        max_tokens: int | None = None,
        on_published: Callable[[CandidateItem, str], None] | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.drive = drive
        self.transcriber = transcriber
        self.publisher = publisher
        self.staging_dir = Path(staging_dir)
        self.tag = tag
        self.complete = complete
        self.schema_constrained = schema_constrained
        self.max_tokens = max_tokens
        self.on_published = on_published
        self.today = today

    # --- Steps ---

    def _fetch(self, item: CandidateItem, slot: Path) -> Path:
        audio_path = slot / f"{STAGING_STEM}.{item.extension}"
        try:
            self.drive.download(item.download_ref, audio_path)
        except (ItemError, PassFatalError):
            raise
        except Exception as e:
            raise DownloadError(f"Download failed: {e}") from e
        if not audio_path.exists() or audio_path.stat().st_size == 0:
            raise DownloadError(f"Downloaded file is empty: {item.name}")
        return audio_path

    def _transcribe(self, audio_path: Path):
        try:
            return self.transcriber.transcribe(audio_path)
        except ItemError:
            raise
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e

    def _summarize(self, transcript: str) -> str:
        instruction = build_instruction(transcript, self.today())
        schema = response_schema() if self.schema_constrained else None
        try:
            return self.complete(instruction, schema=schema, max_tokens=self.max_tokens)
        except ItemError:
            raise
        except Exception as e:
            raise SummarizationError(f"Summarization failed: {e}") from e

    def _publish(self, record: SummaryRecord, transcript: str) -> str:
        try:
            page_id = self.publisher.create_document(record)
            self.publisher.append_content(page_id, split_sentences(transcript), record)
        except ItemError:
            raise
        except Exception as e:
            raise PublishError(f"Publishing failed: {e}") from e
        return page_id

    def _run_steps(self, item: CandidateItem, slot: Path) -> str:
        audio_path = self._fetch(item, slot)
        logger.info("[%s] Fetched (%s)", item.name, format_size(item.size_bytes))

        transcription = self._transcribe(audio_path)
        logger.info("[%s] Transcribed (%ds of audio)", item.name, transcription.duration_seconds)

        transcript = clean_transcript(transcription.text)
        if not transcript:
            raise TranscriptionError("Transcript is empty after cleaning")

        raw = self._summarize(transcript)
        logger.info("[%s] Summarized (%d chars)", item.name, len(raw))

        record = repair(raw)
        record.source_url = item.source_url
        record.duration_seconds = transcription.duration_seconds
        record.size_label = format_size(item.size_bytes)
        record.tag = self.tag

        page_id = self._publish(record, transcript)
        logger.info("[%s] Published as %s", item.name, page_id)
        return page_id

    # --- Item boundary ---

    def process(self, item: CandidateItem) -> ItemOutcome:
        """Process one item; item-scoped failures become a failed outcome."""
        logger.info("Processing %s (%s)", item.name, item.id)
        try:
            with staging_slot(self.staging_dir, item) as slot:
                page_id = self._run_steps(item, slot)
        except ItemError as e:
            logger.error("Item %s failed (%s): %s", item.name, e.kind, e)
            return ItemOutcome(item=item, status="failed", failure=e.kind, reason=str(e))

        if self.on_published:
            self.on_published(item, page_id)
        return ItemOutcome(item=item, status="published", page_id=page_id)

    def run(self, items: list[CandidateItem],
            on_outcome: Callable[[ItemOutcome], None] | None = None) -> list[ItemOutcome]:
        """Process items strictly in order, one at a time."""
        outcomes = []
        for index, item in enumerate(items, 1):
            logger.info("Item %d/%d", index, len(items))
            outcome = self.process(item)
            outcomes.append(outcome)
            if on_outcome:
                on_outcome(outcome)
        return outcomes
