"""Tests for llm_client and prompt modules."""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from config import settings
from src import llm_client
from src.exceptions import SummarizationError
from src.models import LIST_FIELDS, PLACEHOLDER
from src.prompt import build_instruction, response_schema


def _gemini_response(text: str, status: int = 200) -> MagicMock:
    resp = MagicMock(status_code=status, text="body")
    resp.json.return_value = {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]
    }
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Client Error")
    return resp


@pytest.fixture(autouse=True)
def api_key():
    with patch.object(settings, "gemini_api_key", "test-key"):
        yield


def test_complete_returns_text():
    with patch("src.llm_client.requests.post", return_value=_gemini_response('{"title": "x"}')) as post:
        assert llm_client.complete("Summarize this", model="gemini-test") == '{"title": "x"}'

    url = post.call_args.args[0]
    payload = post.call_args.kwargs["json"]
    assert url.endswith("/gemini-test:generateContent")
    assert post.call_args.kwargs["headers"]["x-goog-api-key"] == "test-key"
    assert payload["contents"][0]["parts"][0]["text"] == "Summarize this"
    assert "responseSchema" not in payload["generationConfig"]


def test_schema_enables_json_mode():
    schema = response_schema()
    with patch("src.llm_client.requests.post", return_value=_gemini_response("{}")) as post:
        llm_client.complete("Summarize this", schema=schema, max_tokens=1000)

    config = post.call_args.kwargs["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"] is schema
    assert config["maxOutputTokens"] == 1000


def test_missing_api_key():
    with patch.object(settings, "gemini_api_key", ""):
        with pytest.raises(SummarizationError, match="GEMINI_API_KEY"):
            llm_client.complete("Summarize this")


@patch("src.llm_client.time.sleep")
def test_retries_on_server_error(mock_sleep):
    responses = [_gemini_response("", status=503), _gemini_response("ok")]
    with patch("src.llm_client.requests.post", side_effect=responses):
        assert llm_client.complete("Summarize this") == "ok"
    mock_sleep.assert_called_once_with(2)


@patch("src.llm_client.time.sleep")
def test_gives_up_after_retries(mock_sleep):
    with patch("src.llm_client.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
        with pytest.raises(SummarizationError, match="after 3 retries"):
            llm_client.complete("Summarize this")


def test_client_error_is_not_retried():
    with patch("src.llm_client.requests.post", return_value=_gemini_response("", status=400)) as post:
        with pytest.raises(SummarizationError, match="call failed"):
            llm_client.complete("Summarize this")
    assert post.call_count == 1


def test_unexpected_shape():
    resp = MagicMock(status_code=200)
    resp.json.return_value = {"candidates": []}
    with patch("src.llm_client.requests.post", return_value=resp):
        with pytest.raises(SummarizationError, match="response shape"):
            llm_client.complete("Summarize this")


class TestPrompt:
    """Tests for the summarization instruction."""

    def test_instruction_ends_with_date_and_transcript(self):
        text = build_instruction("We talked about launch plans.", date(2099, 3, 15))
        assert text.endswith("Today is 2099-03-15. Transcript: We talked about launch plans.")
        assert PLACEHOLDER in text

    def test_example_object_lists_every_key(self):
        text = build_instruction("x", date(2099, 3, 15))
        example = json.loads(text.split("Example formatting: ", 1)[1].split("\n\n", 1)[0])
        for key in ("title", "summary", "sentiment", *LIST_FIELDS):
            assert key in example

    def test_schema_requires_every_field(self):
        schema = response_schema()
        assert set(schema["required"]) == {"title", "summary", "sentiment", *LIST_FIELDS}
        assert schema["properties"]["main_points"] == {"type": "ARRAY", "items": {"type": "STRING"}}
        assert schema["propertyOrdering"][0] == "title"
