"""Data models for the Noteline pipeline."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime

PLACEHOLDER = "Nothing found for this list."

LIST_FIELDS = (
    "main_points",
    "action_items",
    "follow_up",
    "stories",
    "references",
    "arguments",
    "related_topics",
)

STRING_FIELDS = {
    "title": "Untitled recording",
    "summary": "Nothing found.",
    "sentiment": "Nothing found.",
}


@dataclass(frozen=True)
class Cursor:
    """Resumption point for change scanning.

    The watermark only ever moves forward; the continuation token is
    provider-opaque and carried through untouched.
    """

    continuation_token: str | None
    watermark_time: datetime  # tz-aware UTC

    def advance(self, to: datetime, continuation_token: str | None = None) -> "Cursor":
        """Return a cursor whose watermark is max(current, to)."""
        return Cursor(
            continuation_token=continuation_token or self.continuation_token,
            watermark_time=max(self.watermark_time, to),
        )


@dataclass(frozen=True)
class CandidateItem:
    """A recording found in the watched folder by one scan."""

    id: str
    name: str
    extension: str  # lower-case, no dot
    size_bytes: int
    created_time: datetime
    download_ref: str
    source_url: str = ""


@dataclass
class SummaryRecord:
    """Structured summary of one recording, ready for publishing.

    Every list field is non-empty: absent content is represented by a
    single placeholder entry.
    """

    title: str = STRING_FIELDS["title"]
    summary: str = STRING_FIELDS["summary"]
    main_points: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    action_items: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    follow_up: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    stories: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    references: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    arguments: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    related_topics: list[str] = field(default_factory=lambda: [PLACEHOLDER])
    sentiment: str = STRING_FIELDS["sentiment"]

    # Enrichment, attached after summarization
    source_url: str = ""
    duration_seconds: int = 0
    size_label: str = ""
    tag: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class ItemOutcome:
    """Result of running one candidate item through the pipeline."""

    item: CandidateItem
    status: str  # "published" | "failed" | "skipped"
    failure: str | None = None
    page_id: str | None = None
    reason: str = ""


@dataclass
class PassResult:
    """Result of one scan-and-process pass.

    status is one of "ok", "reauth_required", "scan_failed",
    "persistence_failed".
    """

    status: str
    run_id: str = ""
    outcomes: list[ItemOutcome] = field(default_factory=list)
    cursor: Cursor | None = None
    error: str | None = None
    auth_url: str | None = None

    @property
    def fatal(self) -> bool:
        return self.status != "ok"

    @property
    def published(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == "published"]

    @property
    def failed(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]
