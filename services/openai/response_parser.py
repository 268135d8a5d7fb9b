"""Helpers to parse Responses API outputs."""

from typing import Any, Dict, Optional


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_text(response: Any) -> str:
    """Return the concatenated output_text parts of the response, or an empty string."""
    parts = []
    for item in _field(response, "output") or []:
        if _field(item, "type") != "message":
            continue
        for content in _field(item, "content") or []:
            if _field(content, "type") == "output_text":
                parts.append(_field(content, "text") or "")
    if parts:
        return "".join(parts)
    return _field(response, "output_text") or ""


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    return {
        "input_tokens": getattr(usage, "input_tokens", None) if usage else None,
        "output_tokens": getattr(usage, "output_tokens", None) if usage else None,
    }
