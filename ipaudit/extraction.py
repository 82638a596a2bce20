"""
IPAudit Text Extraction
Best-effort flattening of AI-authored, schema-free JSON values into text.
"""

import logging
from typing import Any, Iterable, Mapping

from .keywords import with_priority
from .matching import best_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5

# Fallback pieces this short are noise (ids, flags, "n/a") and are dropped
MIN_LABELLED_LENGTH = 5


def deep_extract(value: Any, keywords: Iterable[str] = (), depth: int = 0,
                 max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """
    Recursively locate and concatenate the most relevant text in `value`.

    Strings are returned trimmed, lists are joined with blank lines, and
    mappings return the string held by their best content field or, failing
    that, every field's text labelled with its upper-cased name. Nesting
    deeper than `max_depth` (including self-referencing structures) yields an
    empty string. Never raises.
    """
    if depth > max_depth or value is None:
        return ""

    if isinstance(value, str):
        return value.strip()

    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, (list, tuple)):
        pieces = [deep_extract(item, keywords, depth + 1, max_depth) for item in value]
        return "\n\n".join(p for p in pieces if p)

    if isinstance(value, Mapping):
        return _extract_mapping(value, tuple(keywords), depth, max_depth)

    try:
        return str(value)
    except Exception as e:
        logger.debug(f"Unprintable value of type {type(value).__name__}: {e}")
        return ""


def _extract_mapping(value: Mapping, keywords: tuple, depth: int, max_depth: int) -> str:
    key = best_key(value, with_priority(keywords))
    if key is not None and isinstance(value[key], str):
        return value[key]

    parts = []
    for field_name, field_value in value.items():
        content = deep_extract(field_value, keywords, depth + 1, max_depth)
        if len(content) > MIN_LABELLED_LENGTH:
            parts.append(f"{str(field_name).upper()}: {content}")
    return "\n".join(parts)
