"""Orchestrator: one scan-and-process pass over the watched Drive folder."""

import argparse
import logging
import sqlite3
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable

from config import settings
from src import database, llm_client
from src.change_scanner import ChangeScanner
from src.cursor_store import CursorStore, format_time
from src.drive_client import DriveSession
from src.exceptions import CredentialInvalidError, PersistenceError, ScanError
from src.item_pipeline import ItemPipeline
from src.models import CandidateItem, ItemOutcome, PassResult
from src.notion_publisher import NotionPublisher
from src.transcriber import WhisperTranscriber

logger = logging.getLogger(__name__)

REAUTH_PATH = "/auth"


def run_pass(
    session_factory: Callable[[], object] = DriveSession.open,
    cursor_store: CursorStore | None = None,
    transcriber=None,
    publisher=None,
    complete: Callable[..., str] = llm_client.complete,
    db_path: Path | None = None,
    now: datetime | None = None,
) -> PassResult:
    """Run one pass: load cursor → scan → process items → save cursor.

    Steps:
        1. Load the cursor (first run derives one from the provider)
        2. Scan the folder for the complete batch of new recordings
        3. Run each item through the pipeline, sequentially
        4. Save the cursor computed by the scan

    The cursor is left untouched when scanning or authorization fails, so
    the next trigger retries the same window. Item failures never abort
    the pass.
    """
    run_id = uuid.uuid4().hex[:12]
    database.start_run(run_id, db_path=db_path)
    store = cursor_store or CursorStore(settings.cursor_path)

    def _fail(status: str, step: str, e: Exception, **extra) -> PassResult:
        database.log_step(run_id, step, "failed", str(e), db_path=db_path)
        database.finish_run(run_id, "failed", str(e), db_path=db_path)
        return PassResult(status=status, run_id=run_id, error=str(e), **extra)

    # 1. Load cursor and open the Drive session
    step = "1. Load cursor"
    try:
        cursor = store.load()
        drive = session_factory()
        scanner = ChangeScanner(
            drive,
            settings.drive_folder_id,
            settings.extensions,
            settings.max_file_size_bytes,
            page_size=settings.scan_page_size,
            already_processed=lambda item_id: database.is_published(item_id, db_path=db_path),
        )
        if cursor is None:
            cursor = scanner.initial_cursor(settings.initial_lookback_hours, now=now)
        database.log_step(run_id, step, "success",
                          f"Watermark {format_time(cursor.watermark_time)}", db_path=db_path)

        # 2. Scan
        step = "2. Scan folder"
        logger.info("Step 1/3: Scanning Drive folder %s...", settings.drive_folder_id)
        scan = scanner.scan(cursor, now=now)
        database.log_step(run_id, step, "success", f"{len(scan.items)} recordings to process",
                          db_path=db_path)

        if scan.empty:
            step = "4. Save cursor"
            store.save(scan.cursor)
            database.log_step(run_id, step, "success", "Nothing new", db_path=db_path)
            database.finish_run(run_id, "success", db_path=db_path)
            return PassResult(status="ok", run_id=run_id, cursor=scan.cursor)

        # 3. Process items
        step = "3. Process items"
        logger.info("Step 2/3: Processing %d recordings...", len(scan.items))

        def _record_published(item: CandidateItem, page_id: str) -> None:
            try:
                database.mark_published(item, page_id, db_path=db_path)
            except sqlite3.Error as e:
                logger.error("Failed to record %s as published: %s", item.name, e)

        def _record_outcome(outcome: ItemOutcome) -> None:
            status = "success" if outcome.status == "published" else "failed"
            message = outcome.item.name
            if outcome.failure:
                message = f"{outcome.item.name}: {outcome.failure}: {outcome.reason}"
            try:
                database.log_step(run_id, f"Item {outcome.item.id}", status, message, db_path=db_path)
            except sqlite3.Error as e:
                logger.error("Failed to log outcome for %s: %s", outcome.item.name, e)

        pipeline = ItemPipeline(
            drive,
            transcriber or WhisperTranscriber(),
            publisher or NotionPublisher(),
            settings.staging_dir,
            tag=settings.summary_tag,
            complete=complete,
            schema_constrained=settings.llm_schema_constrained,
            max_tokens=settings.llm_max_tokens,
            on_published=_record_published,
        )
        outcomes = pipeline.run(scan.items, on_outcome=_record_outcome)

        # 4. Save cursor
        step = "4. Save cursor"
        logger.info("Step 3/3: Saving cursor...")
        store.save(scan.cursor)
        database.log_step(run_id, step, "success",
                          f"Watermark {format_time(scan.cursor.watermark_time)}", db_path=db_path)

    except CredentialInvalidError as e:
        logger.error("Google credentials invalid (%s), re-authorization required", e)
        return _fail("reauth_required", step, e, auth_url=REAUTH_PATH)
    except ScanError as e:
        logger.error("Scan failed: %s", e)
        return _fail("scan_failed", step, e)
    except PersistenceError as e:
        logger.error("Persisting state failed: %s", e)
        return _fail("persistence_failed", step, e)
    except Exception as e:
        logger.exception("Unexpected error in pass: %s", e)
        database.log_step(run_id, "Unexpected error", "failed", str(e), db_path=db_path)
        database.finish_run(run_id, "failed", str(e), db_path=db_path)
        raise

    result = PassResult(status="ok", run_id=run_id, outcomes=outcomes, cursor=scan.cursor)
    summary = f"{len(result.published)} published, {len(result.failed)} failed"
    database.finish_run(run_id, "success", db_path=db_path)
    logger.info("Pass complete: %s", summary)
    return result


def main() -> None:
    """Entry point: run a single pass (e.g. from cron)."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(description="Run one Noteline ingestion pass.")
    parser.add_argument("--reset-cursor", action="store_true",
                        help="Delete the saved cursor before scanning")
    args = parser.parse_args()

    store = CursorStore(settings.cursor_path)
    try:
        if args.reset_cursor:
            store.clear()
        result = run_pass(cursor_store=store)
    except PersistenceError as e:
        logger.error("Pass failed: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Pass interrupted.")
        sys.exit(0)

    if result.status == "reauth_required":
        logger.error("Re-authorize via %s or scripts/drive_auth.py", REAUTH_PATH)
        sys.exit(2)
    if result.fatal:
        sys.exit(1)


if __name__ == "__main__":
    main()
