"""Tests for the FastAPI trigger and inspection endpoints."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

import main
from config import settings
from src import database
from src.models import PassResult


@pytest.fixture
def env(tmp_path):
    with (
        patch.object(settings, "google_token_path", tmp_path / "token.json"),
        patch.object(settings, "google_client_secrets_path", tmp_path / "credentials.json"),
        patch.object(settings, "cursor_path", tmp_path / "cursor.json"),
        patch.object(settings, "db_path", tmp_path / "test.db"),
        patch.object(settings, "trigger_secret", ""),
        patch("main._state", main.AppState()),
    ):
        yield tmp_path


@pytest.fixture
def client(env):
    return TestClient(main.app)


def _authorize(env):
    (env / "token.json").write_text(json.dumps({
        "type": "authorized_user",
        "client_id": "client-id",
        "client_secret": "client-secret",
        "refresh_token": "refresh-1",
    }))


class TestChanges:
    """Tests for the /changes trigger."""

    def test_unauthorized_redirects_to_auth(self, client):
        resp = client.get("/changes", follow_redirects=False)
        assert resp.status_code in (302, 307)
        assert resp.headers["location"] == "/auth"

    def test_wrong_secret_is_forbidden(self, client, env):
        _authorize(env)
        with patch.object(settings, "trigger_secret", "s3cret"):
            assert client.post("/changes?secret=nope").status_code == 403

    def test_bearer_secret_is_accepted(self, client, env):
        _authorize(env)
        with (
            patch.object(settings, "trigger_secret", "s3cret"),
            patch("main._run_pass", new=AsyncMock(return_value=None)),
        ):
            resp = client.post("/changes", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_starts_a_pass(self, client, env):
        _authorize(env)
        with patch("main._run_pass", new=AsyncMock(return_value=None)) as run_pass:
            resp = client.get("/changes")
        assert resp.json()["status"] == "started"
        run_pass.assert_called_once()

    def test_second_trigger_before_task_starts_is_rejected(self, client, env):
        _authorize(env)
        with patch("main._run_pass", new=AsyncMock(return_value=None)):
            first = client.get("/changes")
            second = client.get("/changes")
        assert first.json()["status"] == "started"
        assert second.status_code == 409
        assert main._state.pass_running is True

    def test_rejects_overlapping_trigger(self, client, env):
        _authorize(env)
        busy = main.AppState(pass_lock=MagicMock(**{"locked.return_value": True}))
        with patch("main._state", busy):
            resp = client.get("/changes")
        assert resp.status_code == 409
        assert resp.json()["status"] == "already_running"


class TestAuth:
    """Tests for the OAuth endpoints."""

    def test_already_authorized_goes_to_changes(self, client, env):
        _authorize(env)
        resp = client.get("/auth", follow_redirects=False)
        assert resp.headers["location"] == "/changes"

    def test_missing_client_secrets(self, client):
        resp = client.get("/auth", follow_redirects=False)
        assert resp.status_code == 500

    def test_redirects_to_consent(self, client):
        flow = MagicMock()
        with (
            patch("main.drive_client.build_flow", return_value=flow),
            patch("main.drive_client.authorization_url", return_value="https://accounts.google.com/o/oauth2/auth?x=1"),
        ):
            resp = client.get("/auth", follow_redirects=False)
        assert resp.headers["location"].startswith("https://accounts.google.com/")
        assert main._state.pending_flow is flow

    def test_callback_without_code(self, client):
        assert client.get("/oauth2callback").status_code == 400

    def test_callback_exchanges_code(self, client):
        with (
            patch("main.drive_client.build_flow", return_value=MagicMock()),
            patch("main.drive_client.exchange_code") as exchange,
        ):
            resp = client.get("/oauth2callback?code=abc&state=xyz", follow_redirects=False)
        assert resp.headers["location"] == "/changes"
        assert exchange.call_args.args[1] == "abc"

    def test_callback_failure(self, client):
        with (
            patch("main.drive_client.build_flow", return_value=MagicMock()),
            patch("main.drive_client.exchange_code", side_effect=ValueError("bad code")),
        ):
            assert client.get("/oauth2callback?code=abc").status_code == 500


class TestInspection:
    """Tests for the run-log and health endpoints."""

    def test_runs(self, client, env):
        database.start_run("run-1", db_path=env / "test.db")
        database.finish_run("run-1", "success", db_path=env / "test.db")

        runs = client.get("/api/runs").json()
        assert [r["run_id"] for r in runs] == ["run-1"]

        run = client.get("/api/runs/run-1").json()
        assert run["status"] == "success"
        assert run["steps_log"] == []

    def test_unknown_run(self, client):
        assert client.get("/api/runs/nope").status_code == 404

    def test_published(self, client):
        assert client.get("/api/published").json() == []

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["authorized"] is False
        assert data["watermark"] is None
        assert data["pass_running"] is False


def test_run_pass_records_result(env):
    result = PassResult(status="ok", run_id="run-1")
    with patch("main.ingest.run_pass", return_value=result):
        assert asyncio.run(main._run_pass()) is result
    assert main._state.last_result is result
    assert main._state.pass_running is False


def test_run_pass_survives_crash(env):
    with patch("main.ingest.run_pass", side_effect=RuntimeError("boom")):
        assert asyncio.run(main._run_pass()) is None
    assert main._state.pass_running is False
