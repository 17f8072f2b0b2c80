"""
Name helpers shared by the client models and the importer pipeline.
"""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(value: object | None) -> str | None:
    """Trim and collapse internal whitespace runs; blank values become ``None``."""

    if value is None:
        return None
    token = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return token or None


def name_key(value: object | None) -> str | None:
    """
    Comparison key for names and region titles.

    Case-insensitive (``casefold``) and whitespace-normalized so that
    ``"  ivan   PETROV "`` and ``"Ivan Petrov"`` share a key.
    """

    collapsed = collapse_whitespace(value)
    if collapsed is None:
        return None
    return collapsed.casefold()
