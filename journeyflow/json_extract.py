"""Pull one JSON object out of free-form LLM text.

The model is asked for JSON but often wraps it in prose or code fences.
The object is taken to span from the first ``{`` to the last ``}``; anything
outside is ignored.  This is the only place that parsing happens.
"""

from __future__ import annotations

import json
from typing import Any


class JSONExtractionError(ValueError):
    """No parseable JSON object was found in the text."""


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the JSON object embedded in *text*.

    >>> extract_json_object('Sure! {"summary": "ok"} Hope that helps.')
    {'summary': 'ok'}
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise JSONExtractionError("No JSON object found in response")

    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise JSONExtractionError(f"Malformed JSON in response: {exc}") from exc

    if not isinstance(payload, dict):
        raise JSONExtractionError("Response JSON is not an object")
    return payload
