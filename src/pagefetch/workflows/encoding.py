"""Encoding name resolution and the charset priority policy.

Everything here is pure: no I/O, no logging side effects beyond debug
traces, and no exceptions for unknown names. Unknown or non-text codecs
resolve to ``None`` so callers can fall through to the next signal.
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from .fetch_defaults import CHARSET_ATTRIBUTE, FALLBACK_READ_ENCODING

__all__ = [
    "DetectionMode",
    "DetectionPolicy",
    "policy_for",
    "is_known_encoding",
    "is_ascii_encoding",
    "resolve_encoding",
    "extract_charset",
    "initial_encoding",
    "choose_final_encoding",
]

_ASCII_CODEC = "ascii"
# ASCII is a strict subset; the superset keeps stray high bytes decodable.
_ASCII_SUPERSET = "iso8859-1"
_QUOTES = "\"'"
_VALUE_TERMINATORS = frozenset("\"';, >")


class DetectionMode(str, Enum):
    """Which signals the reader consults to pick the body encoding."""

    STATISTICAL = "statistical"
    META_TAG = "meta_tag"
    DEFAULT = "default"
    FORCE_STATISTICAL = "force_statistical"

    @classmethod
    def parse(cls, value: Union[str, "DetectionMode"]) -> "DetectionMode":
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower().replace("-", "_")
        for mode in cls:
            if token in {mode.value, mode.name.lower()}:
                return mode
        raise ValueError(f"Unknown detection mode: {value!r}")


@dataclass(frozen=True)
class DetectionPolicy:
    """Per-mode switches driving the streaming reader's detection phase."""

    fixed_default: bool = False
    consult_header: bool = False
    use_detector: bool = False
    scan_meta: bool = False
    scan_meta_with_header: bool = False
    meta_locks: bool = False

    def scans_meta(self, header_charset: Optional[str]) -> bool:
        if self.scan_meta:
            return True
        return self.scan_meta_with_header and header_charset is not None


_POLICIES: Dict[DetectionMode, DetectionPolicy] = {
    DetectionMode.STATISTICAL: DetectionPolicy(
        consult_header=True,
        use_detector=True,
        scan_meta=True,
    ),
    DetectionMode.META_TAG: DetectionPolicy(
        consult_header=True,
        scan_meta=True,
        meta_locks=True,
    ),
    DetectionMode.DEFAULT: DetectionPolicy(fixed_default=True),
    DetectionMode.FORCE_STATISTICAL: DetectionPolicy(
        use_detector=True,
        scan_meta_with_header=True,
    ),
}


def policy_for(mode: Union[str, DetectionMode]) -> DetectionPolicy:
    return _POLICIES[DetectionMode.parse(mode)]


def _lookup(name: Optional[str]) -> Optional[codecs.CodecInfo]:
    token = (name or "").strip()
    if not token:
        return None
    try:
        info = codecs.lookup(token)
    except (LookupError, TypeError, ValueError):
        return None
    # bytes-to-bytes codecs (base64, zlib, rot13) are registered too
    if not getattr(info, "_is_text_encoding", True):
        return None
    return info


def is_known_encoding(name: Optional[str]) -> bool:
    """Return True when the runtime can decode text with ``name`` (case-insensitive)."""

    return _lookup(name) is not None


def is_ascii_encoding(name: Optional[str]) -> bool:
    info = _lookup(name)
    return info is not None and info.name == _ASCII_CODEC


def resolve_encoding(name: Optional[str]) -> Optional[str]:
    """Return the canonical codec name for ``name`` or None when it is unusable.

    Any ASCII alias resolves to ISO-8859-1.
    """

    info = _lookup(name)
    if info is None:
        return None
    if info.name == _ASCII_CODEC:
        return _ASCII_SUPERSET
    return info.name


def extract_charset(text: Optional[str], attribute: str = CHARSET_ATTRIBUTE) -> Optional[str]:
    """Pull the value of ``attribute`` (default ``charset=``) out of a header or tag.

    The value starts after ``=`` (one leading quote is skipped) and runs up to
    the next quote, semicolon, comma, space or tag close. Unrecognized values
    are treated as absent.
    """

    if not text:
        return None
    match = re.search(re.escape(attribute), text, re.IGNORECASE)
    if match is None:
        return None
    start = match.end()
    if start < len(text) and text[start] in _QUOTES:
        start += 1
    end = len(text)
    for idx in range(start, len(text)):
        if text[idx] in _VALUE_TERMINATORS:
            end = idx
            break
    token = text[start:end].strip()
    if not is_known_encoding(token):
        return None
    return token


def initial_encoding(
    policy: DetectionPolicy,
    header_charset: Optional[str],
    fallback: str,
) -> Optional[str]:
    """Encoding known before any body byte is read, if the policy allows one."""

    if policy.fixed_default:
        return resolve_encoding(fallback)
    if policy.consult_header and header_charset:
        return resolve_encoding(header_charset)
    return None


def choose_final_encoding(
    *,
    meta: Optional[str],
    detected: Optional[str],
    header: Optional[str],
    fallback: Optional[str],
) -> str:
    """Resolve the encoding when the bounded scan did not lock one in.

    Priority: meta tag, detector best guess (any confidence), Content-Type
    charset, configured fallback. Unusable names fall through to the next tier.
    """

    for candidate in (meta, detected, header, fallback):
        resolved = resolve_encoding(candidate)
        if resolved:
            return resolved
    return resolve_encoding(FALLBACK_READ_ENCODING) or _ASCII_SUPERSET
