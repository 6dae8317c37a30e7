"""Incremental facade over charset-normalizer.

The streaming reader wants a detector it can feed chunks to and then query
for a charset name, a confidence score and a "done" flag. charset-normalizer
analyses a complete payload, so this class buffers what it is fed and runs
the analysis on ``close()``.
"""

from __future__ import annotations

from typing import Optional

from charset_normalizer import from_bytes

__all__ = ["CharsetDetector"]


class CharsetDetector:
    def __init__(self) -> None:
        self._buffer = bytearray()
        self._charset: Optional[str] = None
        self._confidence = 0.0
        self._done = False

    def reset(self) -> None:
        self._buffer.clear()
        self._charset = None
        self._confidence = 0.0
        self._done = False

    def feed(self, chunk: bytes) -> None:
        if chunk:
            self._buffer.extend(chunk)

    def close(self) -> None:
        """Run detection over everything fed since the last reset."""

        if not self._buffer:
            return
        best = from_bytes(bytes(self._buffer)).best()
        if best is None:
            return
        self._charset = best.encoding
        self._confidence = max(0.0, 1.0 - float(best.chaos))
        # A BOM/signature is conclusive on its own.
        self._done = bool(best.bom)

    @property
    def charset(self) -> Optional[str]:
        return self._charset

    @property
    def confidence(self) -> float:
        return self._confidence

    @property
    def done(self) -> bool:
        return self._done
