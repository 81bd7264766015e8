"""Model response parsing utilities."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


def _as_payload(parsed: Any) -> Any:
    # a bare list is the span list
    return {"spans": parsed} if isinstance(parsed, list) else parsed


def _try_load(candidate: str) -> Any | None:
    try:
        return _as_payload(json.loads(candidate))
    except json.JSONDecodeError:
        return None


def parse_json_payload(response: str) -> Any | None:
    """Parse a model response that should contain one JSON document.

    Tries the whole response, then a fenced code block, then the outermost
    ``{...}`` or ``[...]``, whichever opens first. A list is wrapped as
    ``{"spans": [...]}``.
    """
    response = (response or "").strip()
    if not response:
        return None

    parsed = _try_load(response)
    if parsed is not None:
        return parsed

    fence = _FENCE_RE.search(response)
    if fence:
        parsed = _try_load(fence.group(1).strip())
        if parsed is not None:
            return parsed

    first_obj, first_arr = response.find("{"), response.find("[")
    patterns = [_OBJECT_RE, _ARRAY_RE]
    if first_arr != -1 and (first_obj == -1 or first_arr < first_obj):
        patterns.reverse()
    for pattern in patterns:
        match = pattern.search(response)
        if match:
            parsed = _try_load(match.group())
            if parsed is not None:
                return parsed
    return None
