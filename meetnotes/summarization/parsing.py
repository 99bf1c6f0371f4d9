"""Pulling a JSON object out of a chat model's reply."""

import json
from typing import Any, Dict, Optional


def strip_code_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _first_balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def extract_json_object(content: str) -> Dict[str, Any]:
    """Parse the first JSON object in ``content``.

    Markdown code fences and any prose before or after the object are
    ignored. Raises ValueError when no object can be parsed.
    """
    text = strip_code_fences(content)
    candidate = _first_balanced_object(text)
    if candidate is None:
        raise ValueError("No JSON object found in response")
    parsed = json.loads(candidate)
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed
