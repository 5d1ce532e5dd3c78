"""Publish summary records as pages in a Notion database."""

import logging
import time
from datetime import date

import requests

from config import settings
from src.exceptions import PublishError
from src.models import SummaryRecord

logger = logging.getLogger(__name__)

API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

MAX_TEXT_LENGTH = 2000  # Notion rich_text content limit
MAX_CHILDREN_PER_REQUEST = 100
SENTENCES_PER_PARAGRAPH = 4

MAX_RETRIES = 3
RETRY_BACKOFF = [2, 5, 10]

ARGUMENTS_WARNING = (
    "These are potential arguments and rebuttals that other people may bring up in response "
    "to the covered topics. Like every other part of this summary document, factual accuracy "
    "is not guaranteed."
)

# (record field, heading, block type)
INFO_SECTIONS = [
    ("main_points", "Main Points", "bulleted_list_item"),
    ("stories", "Stories and Examples", "bulleted_list_item"),
    ("references", "References and Citations", "bulleted_list_item"),
    ("action_items", "Potential Action Items", "to_do"),
    ("follow_up", "Follow-Up Questions", "bulleted_list_item"),
    ("arguments", "Arguments and Areas for Improvement", "bulleted_list_item"),
    ("related_topics", "Related Topics", "bulleted_list_item"),
]


def _chunk_text(text: str, limit: int = MAX_TEXT_LENGTH) -> list[str]:
    """Split text into pieces no longer than the Notion rich_text limit."""
    if not text:
        return [""]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


def _rich_text(text: str, link: str | None = None) -> list[dict]:
    pieces = []
    for chunk in _chunk_text(text):
        piece = {"type": "text", "text": {"content": chunk}}
        if link:
            piece["text"]["link"] = {"url": link}
        pieces.append(piece)
    return pieces


def _block(block_type: str, text: str) -> dict:
    return {"object": "block", "type": block_type, block_type: {"rich_text": _rich_text(text)}}


def transcript_paragraphs(sentences: list[str], per_paragraph: int = SENTENCES_PER_PARAGRAPH) -> list[str]:
    """Group transcript sentences into paragraphs."""
    return [
        " ".join(sentences[i:i + per_paragraph])
        for i in range(0, len(sentences), per_paragraph)
    ]


def build_page(record: SummaryRecord, database_id: str, today: date) -> dict:
    """Build the create-page payload: properties plus the header callout."""
    today_str = today.isoformat()
    callout_text = [
        {"type": "text", "text": {"content": "This AI transcription/summary was created on "}},
        {"type": "mention", "mention": {"type": "date", "date": {"start": today_str}}},
        {"type": "text", "text": {"content": ". "}},
    ]
    if record.source_url:
        callout_text.extend(_rich_text("Listen to the original recording here.", link=record.source_url))

    properties = {
        "Title": {"title": _rich_text(record.title)},
        "Duration (Seconds)": {"number": record.duration_seconds},
        "Date": {"date": {"start": today_str}},
        "Size": {"rich_text": _rich_text(record.size_label)},
    }
    if record.tag:
        properties["Type"] = {"select": {"name": record.tag}}

    return {
        "parent": {"type": "database_id", "database_id": database_id},
        "icon": {"type": "emoji", "emoji": "🤖"},
        "properties": properties,
        "children": [
            {
                "object": "block",
                "type": "callout",
                "callout": {"rich_text": callout_text, "color": "blue_background"},
            },
            {"object": "block", "type": "table_of_contents", "table_of_contents": {"color": "default"}},
        ],
    }


def build_content_blocks(record: SummaryRecord, transcript_segments: list[str]) -> list[dict]:
    """Build the body blocks: summary, transcript, then the info sections."""
    blocks = [
        _block("heading_1", "Summary"),
        _block("paragraph", record.summary),
        _block("heading_1", "Transcript"),
    ]
    blocks.extend(_block("paragraph", p) for p in transcript_paragraphs(transcript_segments))
    blocks.append(_block("heading_1", "Info"))

    for field_name, header, block_type in INFO_SECTIONS:
        blocks.append(_block("heading_2", header))
        if field_name == "arguments":
            blocks.append({
                "object": "block",
                "type": "callout",
                "callout": {
                    "rich_text": _rich_text(ARGUMENTS_WARNING),
                    "icon": {"type": "emoji", "emoji": "⚠️"},
                    "color": "orange_background",
                },
            })
        for item in getattr(record, field_name):
            blocks.append(_block(block_type, item))

    blocks.append(_block("heading_2", "Sentiment"))
    blocks.append(_block("paragraph", record.sentiment))
    return blocks


class NotionPublisher:
    """Knowledge-base adapter backed by the Notion REST API."""

    def __init__(self, api_key: str | None = None, database_id: str | None = None,
                 session: requests.Session | None = None):
        self.api_key = api_key or settings.notion_api_key
        self.database_id = database_id or settings.notion_database_id
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, payload: dict) -> dict:
        if not self.api_key or not self.database_id:
            raise PublishError("Notion API key or database ID not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        last_error = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = self.session.request(method, f"{API_URL}{path}", headers=headers,
                                            json=payload, timeout=30)
                if resp.status_code == 429 or resp.status_code >= 500:
                    wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                    logger.warning(
                        "Notion API %d (attempt %d/%d), retrying in %ds...",
                        resp.status_code, attempt + 1, MAX_RETRIES, wait,
                    )
                    time.sleep(wait)
                    last_error = f"{resp.status_code}: {resp.text[:200]}"
                    continue
                resp.raise_for_status()
                return resp.json()
            except requests.exceptions.HTTPError as e:
                raise PublishError(f"Notion API call failed: {e}") from e
            except requests.exceptions.RequestException as e:
                last_error = str(e)
                if attempt < MAX_RETRIES - 1:
                    time.sleep(RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)])
                continue
        raise PublishError(f"Notion API failed after {MAX_RETRIES} retries: {last_error}")

    def create_document(self, record: SummaryRecord, today: date | None = None) -> str:
        """Create the summary page and return its ID."""
        page = self._request("POST", "/pages", build_page(record, self.database_id, today or date.today()))
        page_id = page.get("id")
        if not page_id:
            raise PublishError("Notion returned no page ID")
        logger.info("Created Notion page %s for %r", page_id, record.title)
        return page_id

    def append_content(self, page_id: str, transcript_segments: list[str], record: SummaryRecord) -> int:
        """Append the summary, transcript and info blocks. Returns the block count."""
        blocks = build_content_blocks(record, transcript_segments)
        block_id = page_id.replace("-", "")
        for i in range(0, len(blocks), MAX_CHILDREN_PER_REQUEST):
            self._request("PATCH", f"/blocks/{block_id}/children",
                          {"children": blocks[i:i + MAX_CHILDREN_PER_REQUEST]})
        logger.info("Appended %d blocks to Notion page %s", len(blocks), page_id)
        return len(blocks)
