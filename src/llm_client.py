"""Thin wrapper around the Google Gemini API."""

import logging
import time

import requests

from config import settings
from src.exceptions import SummarizationError

logger = logging.getLogger(__name__)

API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

MAX_RETRIES = 3
RETRY_BACKOFF = [2, 5, 10]  # seconds to wait between retries


def complete(
    instruction: str,
    schema: dict | None = None,
    max_tokens: int | None = None,
    temperature: float = 0.2,
    timeout: int = 120,
    model: str | None = None,
) -> str:
    """Run one completion and return the raw generated text.

    When a schema is given the call uses constrained JSON decoding
    (responseSchema); otherwise the model generates free-form text.

    Args:
        instruction: Full instruction text, transcript included.
        schema: Optional OpenAPI-style response schema.
        max_tokens: Maximum tokens in the response.
        temperature: Sampling temperature.
        timeout: Request timeout in seconds.
        model: Model ID; defaults to settings.gemini_model.

    Returns:
        The generated text, unparsed.

    Raises:
        SummarizationError: If the API key is missing or all retries fail.
    """
    if not settings.gemini_api_key:
        raise SummarizationError("No GEMINI_API_KEY configured")

    model = model or settings.gemini_model
    url = f"{API_URL}/{model}:generateContent"
    headers = {
        "content-type": "application/json",
        "x-goog-api-key": settings.gemini_api_key,
    }
    generation_config = {
        "maxOutputTokens": max_tokens or settings.llm_max_tokens,
        "temperature": temperature,
    }
    if schema is not None:
        generation_config["responseMimeType"] = "application/json"
        generation_config["responseSchema"] = schema
    payload = {
        "contents": [{"parts": [{"text": instruction}]}],
        "generationConfig": generation_config,
    }

    last_error = None
    for attempt in range(MAX_RETRIES):
        try:
            resp = requests.post(url, headers=headers, json=payload, timeout=timeout)
            if resp.status_code == 429 or resp.status_code >= 500:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                logger.warning(
                    "Gemini API %d (attempt %d/%d), retrying in %ds...",
                    resp.status_code, attempt + 1, MAX_RETRIES, wait,
                )
                time.sleep(wait)
                last_error = f"{resp.status_code}: {resp.text[:200]}"
                continue

            resp.raise_for_status()
            data = resp.json()
            candidate = data["candidates"][0]
            finish_reason = candidate.get("finishReason", "")
            if finish_reason and finish_reason != "STOP":
                logger.warning("Gemini finish reason: %s", finish_reason)
            parts = candidate["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except requests.exceptions.HTTPError as e:
            raise SummarizationError(f"Gemini API call failed: {e}") from e
        except (KeyError, IndexError) as e:
            raise SummarizationError(f"Unexpected Gemini response shape: {e}") from e
        except Exception as e:
            last_error = str(e)
            if attempt < MAX_RETRIES - 1:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                logger.warning(
                    "Gemini API error (attempt %d/%d): %s, retrying in %ds...",
                    attempt + 1, MAX_RETRIES, e, wait,
                )
                time.sleep(wait)
            continue

    raise SummarizationError(f"Gemini API failed after {MAX_RETRIES} retries: {last_error}")
