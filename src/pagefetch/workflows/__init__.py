"""High-level exports for the pagefetch workflows."""

from .charset_detector import CharsetDetector
from .encoding import DetectionMode, resolve_encoding
from .errors import (
    ConfigurationError,
    EmptyResponseError,
    FetchError,
    OperationTimeoutError,
    TransportError,
)
from .redirects import RedirectResolver, assemble_redirect_url
from .stream_reader import StreamingResponseReader, StreamReadResult
from .web_fetch import FetchConfig, FetchResult, WebSession

__all__ = [
    "CharsetDetector",
    "ConfigurationError",
    "DetectionMode",
    "EmptyResponseError",
    "FetchConfig",
    "FetchError",
    "FetchResult",
    "OperationTimeoutError",
    "RedirectResolver",
    "StreamReadResult",
    "StreamingResponseReader",
    "TransportError",
    "WebSession",
    "assemble_redirect_url",
    "resolve_encoding",
]
