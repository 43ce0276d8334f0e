from __future__ import annotations

import re

_WHITESPACE_RUN = re.compile(r"\s+")


def clip_text(text: str, max_length: int) -> str:
    """Collapse whitespace and clip text for log output."""

    flattened = _WHITESPACE_RUN.sub(" ", text)
    if max_length > 0 and len(flattened) > max_length:
        return flattened[:max_length] + f"...(+{len(flattened) - max_length} chars)"
    return flattened


def sanitize_text(text: str, max_length: int) -> str:
    """Trim and clamp user-provided text to a safe length."""

    cleaned = text.strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def sanitize_keywords(keywords: list[str] | None, max_items: int, max_length: int) -> list[str]:
    """Drop blank keywords and clamp the list and each entry."""

    if not keywords:
        return []
    cleaned: list[str] = []
    for keyword in keywords:
        value = sanitize_text(str(keyword), max_length)
        if value and value not in cleaned:
            cleaned.append(value)
        if len(cleaned) >= max_items:
            break
    return cleaned
