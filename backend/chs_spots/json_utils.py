"""Best-effort extraction of structured payloads from free-text LLM output."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class JsonExtraction:
    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any) -> JsonExtraction:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> JsonExtraction:
        return cls(ok=False, error=error)


def _candidates(text: str) -> list[str]:
    # fenced blocks first, then the raw text
    blocks = [match.group(1).strip() for match in _CODE_FENCE_RE.finditer(text)]
    blocks.append(text)
    return blocks


def _extract(raw: Any, expected: type, opener: str) -> JsonExtraction:
    if not isinstance(raw, str):
        return JsonExtraction.failure("payload must be a string")
    text = raw.strip()
    if not text:
        return JsonExtraction.failure("payload is empty")

    decoder = json.JSONDecoder()
    for candidate in _candidates(text):
        for index, char in enumerate(candidate):
            if char != opener:
                continue
            try:
                obj, _ = decoder.raw_decode(candidate[index:])
            except json.JSONDecodeError:
                continue
            if isinstance(obj, expected):
                return JsonExtraction.success(obj)
    return JsonExtraction.failure(f"no JSON {expected.__name__} found in payload")


def extract_json_array(raw: Any) -> JsonExtraction:
    """Extract the first JSON array from text that may contain prose or code fences."""
    return _extract(raw, list, "[")


def extract_json_object(raw: Any) -> JsonExtraction:
    """Extract the first JSON object from text that may contain prose or code fences."""
    return _extract(raw, dict, "{")


def extract_json_payload(raw: Any) -> JsonExtraction:
    """Array first, then object; mirrors how chat responses are usually shaped."""
    found = extract_json_array(raw)
    if found.ok:
        return found
    return extract_json_object(raw)


__all__ = [
    "JsonExtraction",
    "extract_json_array",
    "extract_json_object",
    "extract_json_payload",
]
