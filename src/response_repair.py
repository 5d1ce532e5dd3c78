"""Turn raw LLM output into a fully-shaped SummaryRecord.

The model is asked for JSON but cannot be trusted to produce it, even under
a response schema. Parsing escalates through three strategies:

1. strict ``json.loads`` of the raw text;
2. ``json_repair`` (missing/extra delimiters, unquoted keys, single quotes,
   trailing commas) followed by a strict parse;
3. slicing from the first ``{``/``[`` to the last ``}``/``]``, then repair
   and parse, which drops chatter the model wraps around the JSON.

After a parse succeeds every list field is flattened to strings and
missing fields get placeholders, so publishers never see a missing key.
"""

import json
import logging

import json_repair

from src.exceptions import UnparsableResponseError
from src.models import LIST_FIELDS, PLACEHOLDER, STRING_FIELDS, SummaryRecord

logger = logging.getLogger(__name__)


def _as_object(value) -> dict | None:
    """Accept a JSON object, or a list whose first object is the answer."""
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        for entry in value:
            if isinstance(entry, dict):
                return entry
    return None


def _strict(text: str) -> dict | None:
    try:
        return _as_object(json.loads(text))
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def _repaired(text: str) -> dict | None:
    try:
        fixed = json_repair.repair_json(text)
    except Exception as e:
        logger.debug("json_repair raised: %s", e)
        return None
    return _strict(fixed) if isinstance(fixed, str) else _as_object(fixed)


def _boundary_slice(text: str) -> str | None:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    ends = [i for i in (text.rfind("}"), text.rfind("]")) if i != -1]
    if not starts or not ends:
        return None
    begin, end = min(starts), max(ends)
    if end < begin:
        return None
    return text[begin:end + 1]


def parse_json_object(raw: str) -> dict:
    """Parse raw model output into a dict using the escalating strategies.

    Raises:
        UnparsableResponseError: If every strategy fails.
    """
    data = _strict(raw)
    if data is not None:
        logger.info("JSON repair not needed.")
        return data

    logger.info("Strict parse failed; attempting JSON repair...")
    data = _repaired(raw)
    if data is not None:
        logger.info("JSON repair successful.")
        return data

    logger.info("First JSON repair attempt failed; attempting boundary extraction...")
    span = _boundary_slice(raw)
    if span is not None:
        data = _repaired(span)
        if data is not None:
            logger.info("2nd-stage JSON repair successful.")
            return data

    raise UnparsableResponseError(
        f"Received invalid JSON from the model; all repair strategies failed: {raw[:200]!r}"
    )


def _flatten(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, dict):
        value = list(value.values())
    if not isinstance(value, (list, tuple)):
        value = [value]
    items: list[str] = []
    for entry in value:
        if isinstance(entry, (list, tuple, dict)):
            items.extend(_flatten(entry))
        elif entry is not None:
            text = entry if isinstance(entry, str) else str(entry)
            if text.strip():
                items.append(text)
    return items


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize(data: dict) -> SummaryRecord:
    """Shape a parsed dict into a SummaryRecord, substituting placeholders."""
    fields = {}
    for key, fallback in STRING_FIELDS.items():
        value = data.get(key)
        if isinstance(value, (list, dict)):
            value = " ".join(_flatten(value))
        text = "" if value is None else str(value)
        fields[key] = text if text.strip() else fallback

    for key in LIST_FIELDS:
        items = _flatten(data.get(key))
        if not items:
            logger.info("Field %r missing or empty, substituting placeholder", key)
        fields[key] = items or [PLACEHOLDER]

    return SummaryRecord(
        **fields,
        source_url=str(data.get("source_url") or ""),
        duration_seconds=_as_int(data.get("duration_seconds")),
        size_label=str(data.get("size_label") or ""),
        tag=str(data.get("tag") or ""),
    )


def repair(raw: str) -> SummaryRecord:
    """Coerce raw model output into a SummaryRecord.

    Raises:
        UnparsableResponseError: If no strategy yields a JSON object.
    """
    if not raw or not raw.strip():
        raise UnparsableResponseError("Model returned an empty response")
    return normalize(parse_json_object(raw))
