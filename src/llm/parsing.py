"""
Helpers for turning untrusted model text into JSON values.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, List, Type

from .errors import ModelOutputParseError

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.I)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")


def strip_code_fences(raw: str) -> str:
    """Trim whitespace and a surrounding ```json / ``` markdown fence."""
    text = (raw or "").strip()
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    text = _FENCE_CLOSE_RE.sub("", text, count=1)
    return text.strip()


def _loads(raw: str, error_cls: Type[ModelOutputParseError]) -> Any:
    text = strip_code_fences(raw)
    if not text:
        raise error_cls("empty model response")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise error_cls(f"invalid JSON: {e}") from e


def parse_json_object(
    raw: str,
    error_cls: Type[ModelOutputParseError] = ModelOutputParseError,
) -> dict[str, Any]:
    data = _loads(raw, error_cls)
    if not isinstance(data, dict):
        raise error_cls(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_json_array(
    raw: str,
    error_cls: Type[ModelOutputParseError] = ModelOutputParseError,
) -> List[Any]:
    data = _loads(raw, error_cls)
    if not isinstance(data, list):
        raise error_cls(f"expected a JSON array, got {type(data).__name__}")
    return data


def clamp_unit(value: Any, default: float = 0.0) -> float:
    """Coerce to float and clamp into [0, 1]; NaN and junk become default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return max(0.0, min(1.0, number))


def coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def coerce_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        if isinstance(value, str) and value.strip():
            return [value.strip()]
        return []
    out: list[str] = []
    for item in value:
        text = str(item).strip()
        if text:
            out.append(text)
    return out
