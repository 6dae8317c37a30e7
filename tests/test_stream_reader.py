from types import SimpleNamespace
from typing import Iterator, List, Optional, Tuple

import pytest
from requests.structures import CaseInsensitiveDict

from pagefetch.workflows.encoding import DetectionMode
from pagefetch.workflows.fetch_defaults import MAX_SIZE_HINT, MSG_NO_BYTES_READ
from pagefetch.workflows.stream_reader import StreamingResponseReader

Verdict = Tuple[Optional[str], float, bool]


class FakeDetector:
    """Scripted detector: the n-th close() reports script[n] (last entry repeats)."""

    def __init__(self, script: Optional[List[Verdict]] = None) -> None:
        self.script = script or [(None, 0.0, False)]
        self.closes = 0
        self.fed: List[bytes] = []
        self._verdict: Verdict = (None, 0.0, False)

    def reset(self) -> None:
        self._verdict = (None, 0.0, False)

    def feed(self, chunk: bytes) -> None:
        self.fed.append(chunk)

    def close(self) -> None:
        self._verdict = self.script[min(self.closes, len(self.script) - 1)]
        self.closes += 1

    @property
    def charset(self) -> Optional[str]:
        return self._verdict[0]

    @property
    def confidence(self) -> float:
        return self._verdict[1]

    @property
    def done(self) -> bool:
        return self._verdict[2]


class SteppingClock:
    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


def _no_detector() -> FakeDetector:
    raise AssertionError("detector must not be created")


def _reader(mode=DetectionMode.STATISTICAL, detector=None, **kwargs) -> StreamingResponseReader:
    factory = (lambda: detector) if detector is not None else _no_detector
    return StreamingResponseReader(detection_mode=mode, detector_factory=factory, **kwargs)


def test_header_charset_locks_without_detector() -> None:
    reader = _reader()
    result = reader.read_stream(
        ["caf".encode(), "é!".encode("utf-8")],
        content_type="text/html; charset=UTF-8",
    )

    assert result.encoding == "utf-8"
    assert result.text == "café!"
    assert result.error is None
    assert result.truncated is False


def test_multibyte_character_split_across_chunks() -> None:
    encoded = "naïve ✓".encode("utf-8")
    split = encoded.index(b"\x9c")  # middle of the check mark
    result = _reader().read_stream([encoded[:split], encoded[split:]], content_type="text/plain; charset=utf-8")

    assert result.text == "naïve ✓"
    assert "�" not in result.text


def test_force_statistical_ignores_header() -> None:
    detector = FakeDetector([("cp1252", 0.9, False)])
    reader = _reader(DetectionMode.FORCE_STATISTICAL, detector)

    result = reader.read_stream([b"caf\xe9"], content_type="text/html; charset=utf-8")

    assert result.encoding == "cp1252"
    assert result.text == "café"
    assert detector.closes == 1


def test_detector_verdict_locks_encoding() -> None:
    detector = FakeDetector([("utf-8", 0.95, False)])
    reader = _reader(DetectionMode.STATISTICAL, detector)

    result = reader.read_stream(["über".encode("utf-8"), b" more", b" text"])

    assert result.encoding == "utf-8"
    assert result.text == "über more text"
    assert detector.closes == 1


def test_detector_done_flag_locks_even_with_low_confidence() -> None:
    detector = FakeDetector([("utf-16", 0.1, True)])
    result = _reader(DetectionMode.STATISTICAL, detector).read_stream(["hi".encode("utf-16")])

    assert result.encoding == "utf-16"
    assert result.text == "hi"


def test_detection_window_is_bounded() -> None:
    detector = FakeDetector([("cp1252", 0.2, False)])
    reader = _reader(DetectionMode.STATISTICAL, detector)

    result = reader.read_stream([b"x"] * 12)

    assert detector.closes == 10
    assert result.text == "x" * 12
    # weak detector guess still beats the fallback
    assert result.encoding == "cp1252"


def test_ascii_verdict_never_locks() -> None:
    detector = FakeDetector([("ascii", 1.0, True)])
    reader = _reader(DetectionMode.STATISTICAL, detector)

    result = reader.read_stream([b"plain"] * 4)

    assert detector.closes == 4
    assert result.encoding == "iso8859-1"
    assert result.text == "plain" * 4


def test_meta_grace_window_then_meta_wins() -> None:
    detector = FakeDetector([("cp1252", 0.2, False)])
    reader = _reader(DetectionMode.STATISTICAL, detector)
    chunks = [b'<meta charset="utf-8">', b"a", b"b", "ü".encode("utf-8"), b"c"]

    result = reader.read_stream(chunks)

    assert detector.closes == 3
    assert result.encoding == "utf-8"
    assert result.text == '<meta charset="utf-8">abüc'


def test_meta_tag_mode_locks_on_meta() -> None:
    chunks = [b"<html><head>", b'<meta charset="shift_jis">', "日本".encode("shift_jis")]

    result = _reader(DetectionMode.META_TAG).read_stream(chunks)

    assert result.encoding == "shift_jis"
    assert result.text.endswith("日本")


def test_meta_tag_mode_header_takes_priority() -> None:
    chunks = [b'<meta charset="shift_jis">']

    result = _reader(DetectionMode.META_TAG).read_stream(chunks, content_type="text/html; charset=utf-8")

    assert result.encoding == "utf-8"


def test_default_mode_uses_fallback_only() -> None:
    result = _reader(DetectionMode.DEFAULT).read_stream(
        ["é".encode("utf-8")],
        content_type="text/html; charset=utf-8",
        fallback_encoding="ISO-8859-1",
    )

    assert result.encoding == "iso8859-1"
    assert result.text == "Ã©"


def test_unknown_header_charset_falls_through() -> None:
    detector = FakeDetector([(None, 0.0, False)])
    result = _reader(DetectionMode.STATISTICAL, detector).read_stream(
        [b"abc"], content_type="text/html; charset=not-a-charset", fallback_encoding="utf-8"
    )

    assert result.encoding == "utf-8"
    assert result.text == "abc"


def test_byte_cap_trims_and_is_not_an_error() -> None:
    reader = _reader(max_response_size=10)

    result = reader.read_stream([b"a" * 8, b"b" * 8, b"c" * 8], content_type="text/plain; charset=utf-8")

    assert result.text == "aaaaaaaabb"
    assert result.truncated is True
    assert result.bytes_read == 10
    assert result.error is None


def test_byte_cap_inside_first_chunk() -> None:
    reader = _reader(max_response_size=1024)

    result = reader.read_stream([b"z" * 5000], content_type="text/plain; charset=utf-8")

    assert len(result.text) == 1024
    assert result.truncated is True
    assert result.error is None


@pytest.mark.parametrize("chunks", [[], [b""], [b"", b""]])
def test_zero_bytes_is_an_error(chunks) -> None:
    result = _reader().read_stream(chunks, content_type="text/plain; charset=utf-8")

    assert result.text == ""
    assert result.empty is True
    assert result.error == MSG_NO_BYTES_READ


def test_operation_timeout_between_chunks() -> None:
    reader = _reader(operation_timeout=1.0, clock=SteppingClock(0.6))

    def chunks() -> Iterator[bytes]:
        yield b"first"
        yield b"second"
        yield b"third"

    result = reader.read_stream(chunks(), content_type="text/plain; charset=utf-8")

    assert result.timed_out is True
    assert result.text is None
    assert result.error is not None
    assert result.error.startswith("Operation Timeout : ")
    assert result.error.endswith(" ms")
    assert result.elapsed_ms >= 1000


def test_no_timeout_when_unbounded() -> None:
    reader = _reader(clock=SteppingClock(100.0))

    result = reader.read_stream([b"a", b"b"], content_type="text/plain; charset=utf-8")

    assert result.timed_out is False
    assert result.text == "ab"


def test_buffer_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        StreamingResponseReader(buffer_size=0)


def test_size_hint_is_scaled_and_clamped() -> None:
    reader = StreamingResponseReader(buffer_size=8192)

    assert reader.size_hint(None) == 8192
    assert reader.size_hint("junk") == 8192
    assert reader.size_hint("100") == 8192
    assert reader.size_hint("10000") == 11000
    assert reader.size_hint(str(10 * 1024 * 1024)) == MAX_SIZE_HINT


def test_redirect_locations_from_status_and_final_url() -> None:
    redirect = SimpleNamespace(
        status_code=302,
        headers=CaseInsensitiveDict({"Location": "next"}),
        url="http://example.test/a",
    )
    assert StreamingResponseReader.redirect_locations(redirect, "http://example.test/a") == (
        "next",
        "http://example.test/a/next",
    )

    followed = SimpleNamespace(status_code=200, headers=CaseInsensitiveDict(), url="https://example.test/b")
    assert StreamingResponseReader.redirect_locations(followed, "http://example.test/a") == (
        "https://example.test/b",
        "https://example.test/b",
    )

    same = SimpleNamespace(status_code=200, headers=CaseInsensitiveDict(), url="http://EXAMPLE.test/a")
    assert StreamingResponseReader.redirect_locations(same, "http://example.test/a") == ("", "")


def test_read_response_uses_raw_stream() -> None:
    calls = {}

    class FakeRaw:
        def stream(self, amt, decode_content=True):
            calls["amt"] = amt
            calls["decode_content"] = decode_content
            yield "grüße".encode("utf-8")

    response = SimpleNamespace(
        status_code=200,
        headers=CaseInsensitiveDict({"content-type": "text/plain; charset=utf-8", "content-length": "10000"}),
        url="http://example.test/",
        raw=FakeRaw(),
    )
    reader = _reader(buffer_size=512)

    result = reader.read_response(response, "http://example.test/", decode_content=False)

    assert calls == {"amt": 512, "decode_content": False}
    assert result.text == "grüße"
    assert result.status == 200
    assert result.size_hint == 11000
    assert result.redirect_location == ""


def test_negative_byte_cap_is_rejected() -> None:
    with pytest.raises(ValueError):
        StreamingResponseReader(max_response_size=-1)


def test_zero_byte_cap_reads_nothing_without_error() -> None:
    result = _reader(max_response_size=0).read_stream([b"abc"], content_type="text/plain; charset=utf-8")

    assert result.text == ""
    assert result.truncated is True
    assert result.error is None
