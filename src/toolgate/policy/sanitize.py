"""
Input sanitization for policy decisions.

Every decision starts by normalizing its inputs, so that rate-limit keys,
approval keys, policy lookups and audit rows all agree on one spelling of a
tool name, and content checks never see markup or control characters.

Tool names are lowercased and restricted to [a-z0-9_.-]: "Products.BulkUpdate"
becomes "products.bulkupdate". Dots are kept so namespaced names stay
readable.
"""

import re
from collections.abc import Iterator, Mapping
from typing import Any

_TOOL_UNSAFE = re.compile(r"[^a-z0-9_.-]")
_KEY_UNSAFE = re.compile(r"[^a-z0-9_-]")
_TAG = re.compile(r"<[^>]*>")
_SCRIPT_OR_STYLE = re.compile(r"<(script|style)[^>]*?>.*?</\1>", re.IGNORECASE | re.DOTALL)
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_tool_name(tool: Any) -> str:
    """Canonical tool name, or "" when nothing usable remains."""
    if not isinstance(tool, str):
        return ""
    return _TOOL_UNSAFE.sub("", tool.lower())


def sanitize_entity_id(entity_id: Any) -> int | None:
    """Positive integer entity id, or None."""
    if entity_id is None or isinstance(entity_id, bool):
        return None
    try:
        value = int(entity_id)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def sanitize_key(key: Any) -> str:
    """Field keys: lowercase, [a-z0-9_-] only."""
    return _KEY_UNSAFE.sub("", str(key).lower())


def sanitize_text(value: str) -> str:
    """Strip tags and control characters, collapse whitespace, trim."""
    value = _SCRIPT_OR_STYLE.sub("", value)
    value = _TAG.sub("", value)
    value = _CONTROL.sub(" ", value)
    return _WHITESPACE.sub(" ", value).strip()


def sanitize_value(value: Any) -> Any:
    """Sanitize one field value, recursing into containers."""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, Mapping):
        return sanitize_fields(value)
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return sanitize_text(str(value))


def sanitize_fields(fields: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Sanitize a request's field mapping.

    Keys that sanitize to the empty string are dropped.
    """
    sanitized: dict[str, Any] = {}
    for key, value in (fields or {}).items():
        clean_key = sanitize_key(key)
        if not clean_key:
            continue
        sanitized[clean_key] = sanitize_value(value)
    return sanitized


def iter_string_fields(fields: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, str]]:
    """
    Yield (path, value) for every string in a field mapping.

    Nested values are addressed by dotted path ("meta.subtitle", "tags.0").
    Order follows the mapping's insertion order, depth first.
    """
    for key, value in fields.items():
        path = f"{prefix}{key}"
        if isinstance(value, str):
            yield path, value
        elif isinstance(value, Mapping):
            yield from iter_string_fields(value, f"{path}.")
        elif isinstance(value, list):
            for index, item in enumerate(value):
                item_path = f"{path}.{index}"
                if isinstance(item, str):
                    yield item_path, item
                elif isinstance(item, Mapping):
                    yield from iter_string_fields(item, f"{item_path}.")
