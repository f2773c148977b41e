"""Text normalization helpers shared by all invoice templates."""

import re
from collections.abc import Iterable

_NBSP = "\u00a0"
_WHITESPACE = re.compile(r"\s+")
_UMLAUTS = str.maketrans({"Ä": "AE", "ä": "ae", "Ö": "OE", "ö": "oe", "Ü": "UE", "ü": "ue", "ß": "ss"})


def collapse_whitespace(value: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return _WHITESPACE.sub(" ", value.replace(_NBSP, " ")).strip()


def normalize_lines(text: str | None) -> list[str]:
    """Split raw extracted text into trimmed, non-empty lines.

    Non-breaking spaces become regular spaces and inner whitespace runs are
    collapsed. Empty input yields an empty list.
    """
    if not text:
        return []
    lines = (collapse_whitespace(line) for line in re.split(r"\r?\n", text))
    return [line for line in lines if line]


def split_tokens(line: str) -> list[str]:
    """Split a line into whitespace-delimited tokens."""
    collapsed = collapse_whitespace(line)
    return collapsed.split(" ") if collapsed else []


def transliterate_umlauts(value: str) -> str:
    """Replace German umlauts and sharp s with their ASCII spelling."""
    return value.translate(_UMLAUTS)


def merge_warnings(*collections: str | Iterable[str] | None) -> tuple[str, ...]:
    """Join warning collections, dropping empties and duplicates (first occurrence wins)."""
    merged: dict[str, None] = {}
    for collection in collections:
        if not collection:
            continue
        if isinstance(collection, str):
            merged.setdefault(collection, None)
            continue
        for warning in collection:
            if warning:
                merged.setdefault(warning, None)
    return tuple(merged)
