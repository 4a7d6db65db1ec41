# Classification response parsing
# Models don't always honour "JSON only", so the object is pulled out of
# surrounding prose / code fences before decoding, then normalized.

import json
import re
from typing import Any

from prompt_packager.state import VALID_COMPLEXITIES, Classification

MAX_SUMMARY_LENGTH = 150
MAX_TAGS = 5

# First "{" through last "}" across lines
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class ClassificationParseError(ValueError):
    """The classify response held no decodable JSON object."""


def extract_json_object(response: str) -> dict[str, Any]:
    """Locate and decode the JSON object embedded in a model response.

    Raises:
        ClassificationParseError: no ``{...}`` block, invalid JSON, or the
            decoded value is not an object.
    """
    match = _JSON_OBJECT_RE.search(response or "")
    if not match:
        raise ClassificationParseError("No JSON object found in classification response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ClassificationParseError(f"Invalid JSON in classification response: {e}") from e
    if not isinstance(parsed, dict):
        raise ClassificationParseError("Classification response is not a JSON object")
    return parsed


def _normalize_tags(raw: Any, default: list[str]) -> list[str]:
    if not isinstance(raw, list):
        return default
    tags: list[str] = []
    for item in raw:
        if item is None:
            continue
        tag = str(item).strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:MAX_TAGS] or default


def normalize_classification(parsed: dict[str, Any], defaults: Classification) -> Classification:
    """Merge a decoded classification onto the defaults.

    - summary: non-empty string, truncated to 150 chars
    - tags: list only; lowercased, de-duplicated, at most 5
    - complexity: one of simple/medium/complex/advanced
    """
    summary = parsed.get("summary")
    if isinstance(summary, str) and summary.strip():
        summary = summary.strip()[:MAX_SUMMARY_LENGTH]
    else:
        summary = defaults.summary

    tags = _normalize_tags(parsed.get("tags"), list(defaults.tags))

    complexity = parsed.get("complexity")
    if isinstance(complexity, str) and complexity.strip().lower() in VALID_COMPLEXITIES:
        complexity = complexity.strip().lower()
    else:
        complexity = defaults.complexity

    return Classification(summary=summary, tags=tags, complexity=complexity)


def parse_classification(response: str, defaults: Classification) -> Classification:
    """Extract + normalize a classify response. Raises ClassificationParseError."""
    return normalize_classification(extract_json_object(response), defaults)
