"""Parsing and shape validation of raw extraction responses."""

import json
import logging
import re

from memory_graph.errors import ExtractionError

logger = logging.getLogger(__name__)

# First "{" through last "}", for models that wrap JSON in prose or fences.
_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")

REQUIRED_KEYS = ("entities", "relationships")


def _loads(raw: str) -> object:
    try:
        return json.loads(raw.strip())
    except json.JSONDecodeError:
        match = _JSON_BLOCK_RE.search(raw)
        if not match:
            raise ExtractionError("Could not parse extraction result as JSON")
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ExtractionError(
                f"Could not parse extraction result as JSON: {e}"
            ) from e


def parse_extraction_response(raw: str | None) -> dict:
    """Parse an extraction function's response into entities/relationships.

    Args:
        raw: Text returned by the extraction function.

    Returns:
        ``{"entities": [...], "relationships": [...]}``; null values become
        empty lists.

    Raises:
        ExtractionError: If no JSON object can be parsed, or either key is
            absent or not a list.
    """
    if not raw or not raw.strip():
        raise ExtractionError("Extraction function returned an empty response")

    parsed = _loads(raw)
    if not isinstance(parsed, dict):
        raise ExtractionError("Invalid extraction format: expected a JSON object")

    missing = [key for key in REQUIRED_KEYS if key not in parsed]
    if missing:
        raise ExtractionError(
            f"Invalid extraction format: missing {' and '.join(missing)}"
        )

    data = {}
    for key in REQUIRED_KEYS:
        value = parsed[key] or []
        if not isinstance(value, list):
            raise ExtractionError(f"Invalid extraction format: {key} must be a list")
        data[key] = value

    logger.debug(
        f"Parsed extraction: {len(data['entities'])} entities, "
        f"{len(data['relationships'])} relationships"
    )
    return data
