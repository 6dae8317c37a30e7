"""Fetch defaults (headers, encodings, timeouts, limits, status codes).

Centralizes static defaults so web_fetch.py has no embedded magic numbers.
These are baseline constants used to build a FetchConfig; callers can pass
their own values or overlay them from the environment.
"""

from __future__ import annotations

# Headers
HDR_HOST = "Host"
HDR_USER_AGENT = "User-Agent"
HDR_ACCEPT = "Accept"
HDR_ACCEPT_ENCODING = "Accept-Encoding"
HDR_CONTENT_TYPE = "Content-Type"
HDR_CONTENT_LENGTH = "Content-Length"
HDR_REFERER = "Referer"
HDR_ORIGIN = "Origin"
HDR_CONNECTION = "Connection"
HDR_LOCATION = "Location"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 6.1; WOW64) AppleWebKit/535.1 "
    "(KHTML, like Gecko) Chrome/13.0.782.107 Safari/535.1"
)
DEFAULT_CONTENT_TYPE = "application/x-www-form-urlencoded"
DEFAULT_DECOMPRESSION = ("gzip", "deflate")

# Encodings
DEFAULT_ENCODING = "ISO-8859-1"
FALLBACK_READ_ENCODING = "ISO-8859-1"
BODY_FALLBACK_ENCODING = "utf-8"
CHARSET_ATTRIBUTE = "charset="

# Transport (seconds)
DEFAULT_CONNECT_TIMEOUT = 8.0
DEFAULT_READ_TIMEOUT = 8.0
DEFAULT_CONNECTION_LIMIT = 500

# Streaming reader
DEFAULT_BUFFER_SIZE = 8 * 1024
MAX_SIZE_HINT = 2 * 1024 * 1024
SIZE_HINT_FACTOR = 1.1
DETECTION_MAX_CHUNKS = 10
DETECTION_META_GRACE_CHUNKS = 3
DETECTOR_CONFIDENCE_THRESHOLD = 0.49

# Redirects
REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
REDIRECT_ABSOLUTE_MARKERS = ("http://", "https://", "www.")
REDIRECT_LOOP_MAX = 1_000_000

# Error messages
MSG_EMPTY_URL = "Request URL is not configured or is empty."
MSG_NO_BYTES_READ = "no bytes were read from the response"
MSG_BAD_BUFFER_SIZE = "buffer size must be positive (got {})"
MSG_BAD_MAX_RESPONSE_SIZE = "maximum response size must not be negative (got {})"
