"""Normalize caller-supplied content items into app-server ``UserInput`` items."""

from __future__ import annotations

from typing import Any


def _text(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def _non_empty_str(item: dict, *keys: str) -> str | None:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_input_item(item: Any) -> dict[str, Any] | None:
    """Convert one caller item, or return None when it is unusable.

    Text and local images pass through natively. Mentions, skills and remote
    images have no native form and become text markers (``@path``, ``$name``,
    ``Image URL: ...``).
    """
    if not isinstance(item, dict):
        return None
    kind = str(item.get("type") or "").strip().lower()

    if kind == "text":
        text = _non_empty_str(item, "text")
        return _text(text) if text else None

    if kind in {"local_image", "localimage"}:
        path = _non_empty_str(item, "path")
        return {"type": "localImage", "path": path} if path else None

    if kind == "image":
        url = _non_empty_str(item, "imageUrl", "image_url", "url")
        return _text(f"Image URL: {url}") if url else None

    if kind == "mention":
        path = _non_empty_str(item, "path")
        return _text(f"@{path}") if path else None

    if kind == "skill":
        name = _non_empty_str(item, "name")
        return _text(f"${name}") if name else None

    return None


def normalize_input_items(items: Any) -> list[dict[str, Any]]:
    """Convert a caller item list; never returns an empty list."""
    normalized: list[dict[str, Any]] = []
    if isinstance(items, list):
        for item in items:
            converted = normalize_input_item(item)
            if converted is not None:
                normalized.append(converted)
    return normalized or [_text("")]
