"""FastAPI app: OAuth flow, change trigger and run-log inspection."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from google_auth_oauthlib.flow import Flow

import ingest
from config import settings
from src import database, drive_client
from src.cursor_store import CursorStore, format_time
from src.exceptions import PersistenceError
from src.models import PassResult

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Mutable process state: the pass lock and the pending OAuth flow."""

    pass_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pass_running: bool = False
    last_result: PassResult | None = None
    last_started_at: datetime | None = None
    pending_flow: Flow | None = None
    next_poll: datetime | None = None


_state = AppState()


async def _run_pass() -> PassResult | None:
    """Run one ingestion pass in a worker thread, guarded by the pass lock."""
    if _state.pass_lock.locked():
        logger.warning("Pass already in progress, skipping.")
        return None

    async with _state.pass_lock:
        _state.pass_running = True
        _state.last_started_at = datetime.now(UTC)
        try:
            result = await asyncio.to_thread(ingest.run_pass)
            _state.last_result = result
            if result.status == "reauth_required":
                logger.error("Pass needs re-authorization, visit %s", result.auth_url)
            elif result.fatal:
                logger.error("Pass failed (%s): %s", result.status, result.error)
            else:
                logger.info("Pass finished: %d published, %d failed",
                            len(result.published), len(result.failed))
            return result
        except Exception as e:
            logger.exception("Pass crashed: %s", e)
            return None
        finally:
            _state.pass_running = False


async def _poller() -> None:
    """Fallback timer trigger (in case the external trigger misses)."""
    interval = timedelta(minutes=settings.poll_interval_minutes)
    while True:
        _state.next_poll = datetime.now(UTC) + interval
        await asyncio.sleep(interval.total_seconds())
        if _state.pass_running:
            logger.info("Poller: pass already running, skipping.")
            continue
        logger.info("Poller: triggering pass.")
        _state.pass_running = True
        asyncio.create_task(_run_pass())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create state directories and start the optional poller."""
    settings.staging_dir.mkdir(parents=True, exist_ok=True)
    settings.cursor_path.parent.mkdir(parents=True, exist_ok=True)

    task = None
    if settings.poll_interval_minutes > 0:
        task = asyncio.create_task(_poller())
        logger.info("Poller started (every %d minutes).", settings.poll_interval_minutes)
    yield
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Noteline", description="Drive recordings to Notion summaries", lifespan=lifespan)


# --- OAuth2 ---


@app.get("/auth")
async def auth():
    """Start Google authorization, or go straight to /changes if already authorized."""
    if drive_client.load_credentials(settings.google_token_path) is not None:
        return RedirectResponse("/changes")
    try:
        flow = drive_client.build_flow()
    except (OSError, ValueError) as e:
        logger.error("Cannot start OAuth flow: %s", e)
        return JSONResponse({"error": f"OAuth client secrets unavailable: {e}"}, status_code=500)
    _state.pending_flow = flow
    return RedirectResponse(drive_client.authorization_url(flow))


@app.get("/oauth2callback")
async def oauth2callback(code: str = Query(""), state: str = Query("")):
    """Handle the callback from the authorization flow."""
    if not code:
        return JSONResponse({"error": "Missing authorization code."}, status_code=400)
    try:
        flow = _state.pending_flow or drive_client.build_flow(state=state or None)
        await asyncio.to_thread(drive_client.exchange_code, flow, code)
    except Exception as e:
        logger.error("Error authenticating: %s", e)
        return JSONResponse({"error": "Authentication failed."}, status_code=500)
    finally:
        _state.pending_flow = None
    logger.info("Authentication successful!")
    return RedirectResponse("/changes")


# --- Change trigger ---


@app.api_route("/changes", methods=["GET", "POST"])
async def changes(request: Request, secret: str = Query("")):
    """Trigger one scan-and-process pass and return immediately.

    Accepts the trigger secret via query param or Authorization: Bearer header.
    """
    if not secret:
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            secret = auth_header[7:]
    if settings.trigger_secret and secret != settings.trigger_secret:
        return JSONResponse({"error": "Invalid secret."}, status_code=403)

    if not settings.google_token_path.exists():
        return RedirectResponse(ingest.REAUTH_PATH)

    if _state.pass_running or _state.pass_lock.locked():
        return JSONResponse(
            {"status": "already_running", "message": "A pass is already in progress."},
            status_code=409,
        )

    logger.info("Trigger: starting pass.")
    # Set before the task starts so an overlapping trigger gets 409.
    _state.pass_running = True
    asyncio.create_task(_run_pass())
    return JSONResponse({"status": "started", "message": "Pass started."})


# --- Run log ---


@app.get("/api/runs")
async def api_runs():
    """List recent passes."""
    return JSONResponse(database.list_runs(db_path=settings.db_path))


@app.get("/api/runs/{run_id}")
async def api_run(run_id: str):
    """Get a single pass with its step log."""
    run = database.get_run(run_id, db_path=settings.db_path)
    if not run:
        return JSONResponse({"error": "Run not found"}, status_code=404)
    return JSONResponse(run)


@app.get("/api/published")
async def api_published():
    """List recently published recordings."""
    return JSONResponse(database.list_published(db_path=settings.db_path))


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    try:
        cursor = CursorStore(settings.cursor_path).load()
        watermark = format_time(cursor.watermark_time) if cursor else None
    except PersistenceError as e:
        watermark = f"unreadable: {e}"
    last = _state.last_result
    return {
        "status": "ok",
        "pass_running": _state.pass_running,
        "authorized": settings.google_token_path.exists(),
        "watermark": watermark,
        "last_pass_status": last.status if last else None,
        "last_pass_started_at": _state.last_started_at.isoformat() if _state.last_started_at else None,
        "next_poll": _state.next_poll.isoformat() if _state.next_poll else None,
    }
