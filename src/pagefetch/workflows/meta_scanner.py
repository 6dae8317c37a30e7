"""Find charset declarations in ``<meta>`` tags.

Handles both forms::

    <meta charset="utf-8">
    <meta http-equiv="Content-Type" content="text/html; charset=UTF-8">
"""

from __future__ import annotations

import re
from typing import Iterator, Optional

from .encoding import extract_charset, resolve_encoding

__all__ = ["iter_meta_tags", "find_meta_charset"]

_META_OPEN = re.compile(r"<meta\b", re.IGNORECASE)


def iter_meta_tags(text: str) -> Iterator[str]:
    """Yield complete ``<meta ...>`` tags, last one in ``text`` first.

    Unterminated tags (no closing ``>``) are skipped.
    """

    if not text:
        return
    starts = [match.start() for match in _META_OPEN.finditer(text)]
    for start in reversed(starts):
        close = text.find(">", start + 1)
        if close < 0:
            continue
        yield text[start : close + 1]


def find_meta_charset(text: str) -> Optional[str]:
    """Return the canonical encoding declared by the nearest-to-end meta tag."""

    for tag in iter_meta_tags(text):
        value = extract_charset(tag)
        if value:
            return resolve_encoding(value)
    return None
