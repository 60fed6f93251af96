"""
Best-effort extraction of a JSON payload from language-model output.

Grammar, applied in order:

1. If the text contains a fenced block (```json ... ``` or ``` ... ```),
   the body of the first block is used, otherwise the whole text.
2. Surrounding whitespace is trimmed.
3. The result is parsed as JSON.
4. If that fails, the span from the first "{" to the last "}" is parsed.

Anything else raises ValueError. Callers decide their own fallback value.
"""
from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def strip_code_fence(text: str) -> str:
    raw = text or ""
    match = _FENCE_RE.search(raw)
    if match:
        raw = match.group(1)
    return raw.strip()


def extract_json(text: str) -> Any:
    raw = strip_code_fence(text)
    if not raw:
        raise ValueError("Model response is empty.")
    try:
        return json.loads(raw)
    except ValueError:
        pass

    match = _OBJECT_RE.search(raw)
    if not match:
        raise ValueError("No JSON object found in model response.")
    return json.loads(match.group(0))


def extract_json_object(text: str) -> dict[str, Any]:
    parsed = extract_json(text)
    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object.")
    return parsed
