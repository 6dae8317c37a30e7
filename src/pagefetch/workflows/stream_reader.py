"""Single-pass response body reader with bounded charset detection.

The body arrives as a non-seekable stream of byte chunks whose encoding is
not known up front. The reader keeps every chunk it consumes while it is
still deciding on an encoding (at most ``DETECTION_MAX_CHUNKS`` of them),
replays those through the chosen decoder, then decodes the rest of the
stream directly. Memory stays bounded by the detection window and the
network stream is read exactly once.
"""

from __future__ import annotations

import codecs
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple

from .charset_detector import CharsetDetector
from .encoding import (
    DetectionMode,
    choose_final_encoding,
    extract_charset,
    initial_encoding,
    is_ascii_encoding,
    policy_for,
    resolve_encoding,
)
from .fetch_defaults import (
    DEFAULT_BUFFER_SIZE,
    DETECTION_MAX_CHUNKS,
    DETECTION_META_GRACE_CHUNKS,
    DETECTOR_CONFIDENCE_THRESHOLD,
    FALLBACK_READ_ENCODING,
    HDR_CONTENT_LENGTH,
    HDR_CONTENT_TYPE,
    HDR_LOCATION,
    MAX_SIZE_HINT,
    MSG_NO_BYTES_READ,
    SIZE_HINT_FACTOR,
)
from .meta_scanner import find_meta_charset
from .redirects import assemble_redirect_url, is_redirect_status

logger = logging.getLogger(__name__)

__all__ = ["StreamReadResult", "StreamingResponseReader"]


@dataclass
class StreamReadResult:
    """Outcome of reading one response body.

    ``text`` is None only when the operation timeout fired. ``truncated``
    means the byte cap was reached, which is not an error.
    """

    text: Optional[str]
    encoding: Optional[str]
    bytes_read: int = 0
    truncated: bool = False
    timed_out: bool = False
    empty: bool = False
    error: Optional[str] = None
    elapsed_ms: int = 0
    status: int = 0
    size_hint: int = 0
    redirect_location: str = ""
    full_redirect_location: str = ""


@dataclass
class _StreamState:
    started: float
    encoding: Optional[str] = None
    retained: List[bytes] = field(default_factory=list)
    pieces: List[str] = field(default_factory=list)
    bytes_read: int = 0
    truncated: bool = False


class StreamingResponseReader:
    """Turn a byte stream of unknown encoding into text within size and time bounds.

    All per-call state lives in a ``_StreamState`` created by each read, so
    one reader can serve several sessions.
    """

    def __init__(
        self,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        max_response_size: Optional[int] = None,
        operation_timeout: Optional[float] = None,
        detection_mode: DetectionMode = DetectionMode.STATISTICAL,
        detector_factory: Callable[[], CharsetDetector] = CharsetDetector,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        if max_response_size is not None and max_response_size < 0:
            raise ValueError("max_response_size must not be negative")
        self.buffer_size = buffer_size
        self.max_response_size = max_response_size
        self.operation_timeout = operation_timeout
        self.detection_mode = DetectionMode.parse(detection_mode)
        self._detector_factory = detector_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Response level
    # ------------------------------------------------------------------

    def read_response(
        self,
        response: Any,
        requested_url: str,
        *,
        fallback_encoding: Optional[str] = None,
        decode_content: bool = True,
    ) -> StreamReadResult:
        """Read a streaming ``requests.Response`` opened with ``stream=True``.

        The caller keeps ownership of ``response`` and must close it.
        """

        started = self._clock()
        redirect_location, full_redirect_location = self.redirect_locations(response, requested_url)
        headers = response.headers
        size_hint = self.size_hint(headers.get(HDR_CONTENT_LENGTH))
        logger.debug(
            "reading %s status=%s size_hint=%d mode=%s",
            requested_url,
            response.status_code,
            size_hint,
            self.detection_mode.value,
        )
        chunks = response.raw.stream(self.buffer_size, decode_content=decode_content)
        result = self.read_stream(
            chunks,
            content_type=headers.get(HDR_CONTENT_TYPE),
            fallback_encoding=fallback_encoding,
            started=started,
        )
        result.status = response.status_code
        result.size_hint = size_hint
        result.redirect_location = redirect_location
        result.full_redirect_location = full_redirect_location
        return result

    @staticmethod
    def redirect_locations(response: Any, requested_url: str) -> Tuple[str, str]:
        """Return ``(location, absolute_location)`` for redirect-like responses.

        A redirect status uses the ``Location`` header; otherwise a final URL
        different from the requested one (auto-redirect followed) counts.
        """

        if is_redirect_status(response.status_code):
            location = response.headers.get(HDR_LOCATION) or ""
            if not location:
                return "", ""
            return location, assemble_redirect_url(requested_url, location)
        final_url = response.url or ""
        if final_url and final_url.lower() != (requested_url or "").lower():
            return final_url, assemble_redirect_url(requested_url, final_url)
        return "", ""

    def size_hint(self, content_length: Optional[str]) -> int:
        """Expected decoded size, from Content-Length scaled and clamped."""

        try:
            length = int(content_length or 0)
        except (TypeError, ValueError):
            length = 0
        hint = int(length * SIZE_HINT_FACTOR)
        if hint < self.buffer_size:
            return self.buffer_size
        return min(hint, MAX_SIZE_HINT)

    # ------------------------------------------------------------------
    # Stream level
    # ------------------------------------------------------------------

    def read_stream(
        self,
        chunks: Iterable[bytes],
        *,
        content_type: Optional[str] = None,
        fallback_encoding: Optional[str] = None,
        started: Optional[float] = None,
    ) -> StreamReadResult:
        state = _StreamState(started=self._clock() if started is None else started)
        fallback = resolve_encoding(fallback_encoding) or resolve_encoding(FALLBACK_READ_ENCODING)
        policy = policy_for(self.detection_mode)
        header_charset = None if policy.fixed_default else extract_charset(content_type)
        state.encoding = initial_encoding(policy, header_charset, fallback)

        detector = None
        if policy.use_detector and state.encoding is None:
            detector = self._detector_factory()
        scan_meta = policy.scans_meta(header_charset)
        meta_encoding: Optional[str] = None
        exhausted = False
        iterator = iter(chunks)

        while True:
            chunk = self._next_chunk(iterator)
            if chunk is None:
                exhausted = True
                break
            state.retained.append(self._take(state, chunk))
            if state.truncated:
                break
            if self._expired(state):
                return self._timeout(state)
            if state.encoding is not None:
                break

            if detector is not None:
                verdict = self._detect(detector, state.retained[-1])
                if verdict:
                    state.encoding = verdict
                    logger.debug("charset %s locked by detector (%.2f)", verdict, detector.confidence)
                    break

            if meta_encoding is None and scan_meta:
                preview = state.retained[-1].decode(fallback, errors="replace")
                meta_encoding = find_meta_charset(preview)
                if meta_encoding and policy.meta_locks:
                    state.encoding = meta_encoding
                    logger.debug("charset %s locked by meta tag", meta_encoding)
                    break

            consumed = len(state.retained)
            if (meta_encoding and consumed >= DETECTION_META_GRACE_CHUNKS) or consumed >= DETECTION_MAX_CHUNKS:
                break

        if state.encoding is None:
            state.encoding = choose_final_encoding(
                meta=meta_encoding,
                detected=detector.charset if detector is not None else None,
                header=header_charset,
                fallback=fallback,
            )
            logger.debug("charset %s chosen after detection window", state.encoding)

        if not state.retained:
            logger.warning("empty response body (encoding %s)", state.encoding)
            return self._result(state, text="", error=MSG_NO_BYTES_READ, empty=True)

        decoder = codecs.getincrementaldecoder(state.encoding)(errors="replace")
        for raw in state.retained:
            state.pieces.append(decoder.decode(raw))
        state.retained.clear()

        if not (state.truncated or exhausted):
            for chunk in iterator:
                if not chunk:
                    continue
                state.pieces.append(decoder.decode(self._take(state, chunk)))
                if self._expired(state):
                    return self._timeout(state)
                if state.truncated:
                    break

        state.pieces.append(decoder.decode(b"", final=True))
        if state.truncated:
            logger.debug("byte cap %s reached; returning partial body", self.max_response_size)
        return self._result(state, text="".join(state.pieces))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _next_chunk(iterator: Iterator[bytes]) -> Optional[bytes]:
        for chunk in iterator:
            if chunk:
                return chunk
        return None

    def _take(self, state: _StreamState, chunk: bytes) -> bytes:
        """Account for ``chunk``, trimming it at the byte cap."""

        limit = self.max_response_size
        if limit is not None:
            room = max(limit - state.bytes_read, 0)
            if len(chunk) >= room:
                chunk = chunk[:room]
                state.truncated = True
        state.bytes_read += len(chunk)
        return chunk

    @staticmethod
    def _detect(detector: CharsetDetector, chunk: bytes) -> Optional[str]:
        detector.reset()
        detector.feed(chunk)
        detector.close()
        charset = detector.charset
        if not charset or is_ascii_encoding(charset):
            return None
        if detector.done or detector.confidence > DETECTOR_CONFIDENCE_THRESHOLD:
            return resolve_encoding(charset)
        return None

    def _elapsed_ms(self, state: _StreamState) -> int:
        return int((self._clock() - state.started) * 1000)

    def _expired(self, state: _StreamState) -> bool:
        if self.operation_timeout is None:
            return False
        return (self._clock() - state.started) >= self.operation_timeout

    def _timeout(self, state: _StreamState) -> StreamReadResult:
        elapsed = self._elapsed_ms(state)
        logger.warning("operation timeout after %d ms (%d bytes read)", elapsed, state.bytes_read)
        return self._result(
            state,
            text=None,
            error=f"Operation Timeout : {elapsed} ms",
            timed_out=True,
        )

    def _result(
        self,
        state: _StreamState,
        *,
        text: Optional[str],
        error: Optional[str] = None,
        timed_out: bool = False,
        empty: bool = False,
    ) -> StreamReadResult:
        return StreamReadResult(
            text=text,
            encoding=state.encoding,
            bytes_read=state.bytes_read,
            truncated=state.truncated,
            timed_out=timed_out,
            empty=empty,
            error=error,
            elapsed_ms=self._elapsed_ms(state),
        )
