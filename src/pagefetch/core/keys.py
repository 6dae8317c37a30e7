"""Shared schema keys for serialized fetch results."""

from __future__ import annotations

# Request/response identity
K_URL = "url"
K_FINAL_URL = "final_url"
K_STATUS = "status"
K_CONTENT_TYPE = "content_type"
K_HEADERS = "headers"
K_FETCHED_AT = "fetched_at"

# Body/decoding
K_TEXT = "text"
K_TEXT_LENGTH = "text_length"
K_TEXT_SHA256 = "text_sha256"
K_ENCODING = "encoding"
K_BYTES_READ = "bytes_read"
K_TRUNCATED = "truncated"
K_SIZE_HINT = "size_hint"
K_ELAPSED_MS = "elapsed_ms"

# Redirects/errors
K_REDIRECT_LOCATION = "redirect_location"
K_FULL_REDIRECT_LOCATION = "full_redirect_location"
K_ERROR = "error"
