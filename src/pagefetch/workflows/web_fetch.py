from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

import requests
import urllib3
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from requests.cookies import RequestsCookieJar
from requests.structures import CaseInsensitiveDict

from ..core.keys import (
    K_BYTES_READ,
    K_CONTENT_TYPE,
    K_ELAPSED_MS,
    K_ENCODING,
    K_ERROR,
    K_FETCHED_AT,
    K_FINAL_URL,
    K_FULL_REDIRECT_LOCATION,
    K_HEADERS,
    K_REDIRECT_LOCATION,
    K_SIZE_HINT,
    K_STATUS,
    K_TEXT,
    K_TEXT_LENGTH,
    K_TEXT_SHA256,
    K_TRUNCATED,
    K_URL,
)
from .charset_detector import CharsetDetector
from .encoding import DetectionMode, resolve_encoding
from .errors import (
    ConfigurationError,
    EmptyResponseError,
    FetchError,
    OperationTimeoutError,
    TransportError,
)
from .fetch_defaults import (
    BODY_FALLBACK_ENCODING,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_CONNECTION_LIMIT,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_DECOMPRESSION,
    DEFAULT_ENCODING,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_USER_AGENT,
    HDR_ACCEPT,
    HDR_ACCEPT_ENCODING,
    HDR_CONNECTION,
    HDR_CONTENT_TYPE,
    HDR_HOST,
    HDR_ORIGIN,
    HDR_REFERER,
    HDR_USER_AGENT,
    MSG_BAD_BUFFER_SIZE,
    MSG_BAD_MAX_RESPONSE_SIZE,
    MSG_EMPTY_URL,
)
from .fetcher_utils import env_bool, env_float, env_int, env_str
from .redirects import RedirectResolver
from .stream_reader import StreamReadResult, StreamingResponseReader

logger = logging.getLogger(__name__)

Body = Union[str, bytes, Mapping[str, Any], None]

_TRANSPORT_ERRORS = (requests.RequestException, urllib3.exceptions.HTTPError, OSError)


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class FetchConfig:
    """Request-shaping knobs shared by every call of a WebSession.

    Timeouts are in seconds. ``operation_timeout`` and ``max_response_size``
    default to None (unbounded). The connection limit is applied when the
    session builds its transport.
    """

    host: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    accept: Optional[str] = None
    content_type: str = DEFAULT_CONTENT_TYPE
    referer: Optional[str] = None
    origin: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    proxy: Optional[str] = None
    credentials: Optional[Tuple[str, str]] = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    operation_timeout: Optional[float] = None
    allow_auto_redirect: bool = True
    keep_alive: bool = False
    decompression: Tuple[str, ...] = DEFAULT_DECOMPRESSION
    buffer_size: int = DEFAULT_BUFFER_SIZE
    max_response_size: Optional[int] = None
    connection_limit: int = DEFAULT_CONNECTION_LIMIT
    verify_ssl: bool = True
    encoding: str = DEFAULT_ENCODING
    detection_mode: DetectionMode = DetectionMode.STATISTICAL

    @classmethod
    def from_env(cls, **overrides: Any) -> "FetchConfig":
        """Build a config from PAGEFETCH_* variables; explicit overrides win."""

        base = cls()
        mode_raw = env_str("PAGEFETCH_DETECTION_MODE")
        try:
            mode = DetectionMode.parse(mode_raw) if mode_raw else base.detection_mode
        except ValueError:
            mode = base.detection_mode
        values: Dict[str, Any] = {
            "user_agent": env_str("PAGEFETCH_USER_AGENT", base.user_agent),
            "encoding": env_str("PAGEFETCH_ENCODING", base.encoding),
            "detection_mode": mode,
            "connect_timeout": env_float("PAGEFETCH_CONNECT_TIMEOUT", base.connect_timeout),
            "read_timeout": env_float("PAGEFETCH_READ_TIMEOUT", base.read_timeout),
            "operation_timeout": env_float("PAGEFETCH_OPERATION_TIMEOUT", base.operation_timeout),
            "buffer_size": env_int("PAGEFETCH_BUFFER_SIZE", base.buffer_size, minimum=1),
            "max_response_size": env_int("PAGEFETCH_MAX_RESPONSE_SIZE", base.max_response_size, minimum=0),
            "connection_limit": env_int("PAGEFETCH_CONNECTION_LIMIT", base.connection_limit, minimum=1),
            "proxy": env_str("PAGEFETCH_PROXY", base.proxy),
            "verify_ssl": not env_bool("PAGEFETCH_INSECURE", not base.verify_ssl),
            "allow_auto_redirect": env_bool("PAGEFETCH_AUTO_REDIRECT", base.allow_auto_redirect),
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class FetchResult:
    """Container for a single fetch call."""

    url: str
    status: int = 0
    text: str = ""
    encoding: Optional[str] = None
    content_type: str = ""
    final_url: str = ""
    bytes_read: int = 0
    truncated: bool = False
    size_hint: int = 0
    elapsed_ms: int = 0
    redirect_location: str = ""
    full_redirect_location: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    fetched_at: str = field(default_factory=_utc_now)

    @property
    def success(self) -> bool:
        return self.error is None and 200 <= self.status < 300

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K_URL: self.url,
            K_FINAL_URL: self.final_url or self.url,
            K_STATUS: self.status,
            K_CONTENT_TYPE: self.content_type,
            K_ENCODING: self.encoding,
            K_TEXT_SHA256: hashlib.sha256(self.text.encode("utf-8")).hexdigest() if self.text else "",
            K_TEXT_LENGTH: len(self.text),
            K_BYTES_READ: self.bytes_read,
            K_TRUNCATED: self.truncated,
            K_SIZE_HINT: self.size_hint,
            K_ELAPSED_MS: self.elapsed_ms,
            K_FETCHED_AT: self.fetched_at,
        }
        if self.redirect_location:
            payload[K_REDIRECT_LOCATION] = self.redirect_location
            payload[K_FULL_REDIRECT_LOCATION] = self.full_redirect_location
        if self.headers:
            payload[K_HEADERS] = dict(self.headers)
        if self.text:
            payload[K_TEXT] = self.text
        if self.error:
            payload[K_ERROR] = self.error
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class WebSession:
    """Synchronous fetch session: cookies, headers and transport knobs reused across calls.

    One call at a time per session. The ``last_*`` fields describe the most
    recent call and are reset when the next one starts; share a session
    between threads only behind a lock, or give each thread its own.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        transport: Optional[requests.Session] = None,
        detector_factory: Callable[[], CharsetDetector] = CharsetDetector,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or FetchConfig()
        self._transport = transport or self._build_transport(self.config.connection_limit)
        self._cookie_jar = RequestsCookieJar()
        self._detector_factory = detector_factory
        self._clock = clock
        self.last_error = ""
        self.last_status = 0
        self.redirect_location = ""
        self.full_redirect_location = ""
        self.last_page_encoding: Optional[str] = None
        self.last_result: Optional[FetchResult] = None

    @staticmethod
    def _build_transport(connection_limit: int) -> requests.Session:
        transport = requests.Session()
        transport.trust_env = False
        adapter = HTTPAdapter(pool_maxsize=max(1, connection_limit))
        transport.mount("http://", adapter)
        transport.mount("https://", adapter)
        return transport

    def __enter__(self) -> "WebSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._reset_call_state()
        self._transport.close()

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def cookie_jar(self) -> RequestsCookieJar:
        return self._cookie_jar

    def clear_cookies(self) -> None:
        """Swap in a new empty jar; holders of the old jar keep their copy intact."""

        self._cookie_jar = RequestsCookieJar()

    def clear_error(self) -> None:
        self.last_error = ""

    def trust_all_certificates(self) -> None:
        self.config.verify_ssl = False

    def _reset_call_state(self) -> None:
        self.last_error = ""
        self.last_status = 0
        self.redirect_location = ""
        self.full_redirect_location = ""
        self.last_page_encoding = None
        self.last_result = None

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def encode_body(self, body: Body) -> Optional[bytes]:
        """Encode a request body with the configured text encoding."""

        if body is None:
            return None
        if isinstance(body, bytes):
            return body or None
        if isinstance(body, Mapping):
            body = urlencode(body, doseq=True)
        if not body:
            return None
        encoding = resolve_encoding(self.config.encoding) or BODY_FALLBACK_ENCODING
        return body.encode(encoding, errors="replace")

    def build_headers(self) -> CaseInsensitiveDict:
        cfg = self.config
        headers: CaseInsensitiveDict = CaseInsensitiveDict(cfg.headers or {})
        named = {
            HDR_USER_AGENT: cfg.user_agent,
            HDR_ACCEPT: cfg.accept,
            HDR_CONTENT_TYPE: cfg.content_type,
            HDR_REFERER: cfg.referer,
            HDR_ORIGIN: cfg.origin,
            HDR_HOST: cfg.host,
        }
        for name, value in named.items():
            if value:
                headers[name] = value
        headers[HDR_ACCEPT_ENCODING] = ", ".join(cfg.decompression) if cfg.decompression else "identity"
        headers[HDR_CONNECTION] = "keep-alive" if cfg.keep_alive else "close"
        return headers

    def build_request(self, url: str, verb: str = "GET", body: Body = None) -> requests.PreparedRequest:
        """Return a fresh prepared request wired with the current configuration.

        Proxy, timeouts, certificate policy and the redirect toggle are
        send-time options; see ``send_kwargs``.
        """

        auth = HTTPBasicAuth(*self.config.credentials) if self.config.credentials else None
        request = requests.Request(
            method=verb.upper(),
            url=url,
            headers=dict(self.build_headers()),
            data=self.encode_body(body),
            cookies=self._cookie_jar,
            auth=auth,
        )
        return request.prepare()

    def send_kwargs(self) -> Dict[str, Any]:
        cfg = self.config
        proxies = {"http": cfg.proxy, "https": cfg.proxy} if cfg.proxy else {}
        return {
            "stream": True,
            "timeout": (cfg.connect_timeout, cfg.read_timeout),
            "allow_redirects": cfg.allow_auto_redirect,
            "verify": cfg.verify_ssl,
            "proxies": proxies,
        }

    def _send(
        self,
        verb: str,
        url: str,
        body: Body = None,
        *,
        allow_redirects: Optional[bool] = None,
    ) -> Tuple[requests.PreparedRequest, requests.Response]:
        prepared = self.build_request(url, verb, body)
        kwargs = self.send_kwargs()
        if allow_redirects is not None:
            kwargs["allow_redirects"] = allow_redirects
        # Response cookies (including redirect hops) land in the jar current at send time.
        self._transport.cookies = self._cookie_jar
        response = self._transport.send(prepared, **kwargs)
        return prepared, response

    def _reader(self) -> StreamingResponseReader:
        cfg = self.config
        return StreamingResponseReader(
            buffer_size=cfg.buffer_size,
            max_response_size=cfg.max_response_size,
            operation_timeout=cfg.operation_timeout,
            detection_mode=cfg.detection_mode,
            detector_factory=self._detector_factory,
            clock=self._clock,
        )

    def _fallback_encoding(self) -> str:
        return resolve_encoding(self.config.encoding) or BODY_FALLBACK_ENCODING

    # ------------------------------------------------------------------
    # Error policy
    # ------------------------------------------------------------------

    def _fail(self, error: FetchError, raise_on_error: bool, cause: Optional[BaseException] = None) -> None:
        self.last_error = error.message
        if raise_on_error:
            raise error from cause

    def _check_url(self, url: Optional[str], raise_on_error: bool) -> bool:
        if url:
            return True
        self._fail(ConfigurationError(MSG_EMPTY_URL, url=url), raise_on_error)
        return False

    def _check_limits(self, url: Optional[str], raise_on_error: bool) -> bool:
        cfg = self.config
        if cfg.buffer_size <= 0:
            message = MSG_BAD_BUFFER_SIZE.format(cfg.buffer_size)
        elif cfg.max_response_size is not None and cfg.max_response_size < 0:
            message = MSG_BAD_MAX_RESPONSE_SIZE.format(cfg.max_response_size)
        else:
            return True
        self._fail(ConfigurationError(message, url=url), raise_on_error)
        return False

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    def fetch(
        self,
        verb: str,
        url: Optional[str],
        data: Body = None,
        raise_on_error: bool = False,
    ) -> FetchResult:
        """Issue ``verb`` against ``url`` and decode the body.

        Failures are recorded in ``last_error`` and reflected in the returned
        result; they are raised only when ``raise_on_error`` is set.
        """

        self._reset_call_state()
        if not (self._check_url(url, raise_on_error) and self._check_limits(url, raise_on_error)):
            result = FetchResult(url=url or "", error=self.last_error)
            self.last_result = result
            return result

        try:
            prepared, response = self._send(verb, url, data)
            with response:
                outcome = self._reader().read_response(
                    response,
                    prepared.url or url,
                    fallback_encoding=self._fallback_encoding(),
                    decode_content=bool(self.config.decompression),
                )
                headers = CaseInsensitiveDict(response.headers)
                final_url = response.url or url
        except _TRANSPORT_ERRORS as exc:
            logger.warning("%s %s failed: %s", verb.upper(), url, exc)
            result = FetchResult(url=url, error=str(exc) or exc.__class__.__name__)
            self.last_result = result
            self._fail(TransportError(result.error, url=url), raise_on_error, exc)
            return result

        result = self._record(url, final_url, headers, outcome)
        if outcome.error:
            self.last_error = outcome.error
            if outcome.timed_out:
                error: FetchError = OperationTimeoutError(outcome.error, url=url, elapsed_ms=outcome.elapsed_ms)
            else:
                error = EmptyResponseError(outcome.error, url=url)
            self._fail(error, raise_on_error)
        return result

    def _record(
        self,
        url: str,
        final_url: str,
        headers: CaseInsensitiveDict,
        outcome: StreamReadResult,
    ) -> FetchResult:
        self.last_status = outcome.status
        self.redirect_location = outcome.redirect_location
        self.full_redirect_location = outcome.full_redirect_location
        self.last_page_encoding = outcome.encoding
        result = FetchResult(
            url=url,
            status=outcome.status,
            text=outcome.text or "",
            encoding=outcome.encoding,
            content_type=headers.get(HDR_CONTENT_TYPE, ""),
            final_url=final_url,
            bytes_read=outcome.bytes_read,
            truncated=outcome.truncated,
            size_hint=outcome.size_hint,
            elapsed_ms=outcome.elapsed_ms,
            redirect_location=outcome.redirect_location,
            full_redirect_location=outcome.full_redirect_location,
            headers=dict(headers),
            error=outcome.error,
        )
        self.last_result = result
        return result

    def get(self, url: Optional[str], raise_on_error: bool = False) -> str:
        """GET ``url`` and return the decoded body ("" on failure)."""
        return self.fetch("GET", url, None, raise_on_error).text

    def post(self, url: Optional[str], data: Body = None, raise_on_error: bool = False) -> str:
        return self.fetch("POST", url, data, raise_on_error).text

    def put(self, url: Optional[str], data: Body = None, raise_on_error: bool = False) -> str:
        return self.fetch("PUT", url, data, raise_on_error).text

    def delete(self, url: Optional[str], data: Body = None, raise_on_error: bool = False) -> str:
        return self.fetch("DELETE", url, data, raise_on_error).text

    # ------------------------------------------------------------------
    # Raw variants
    # ------------------------------------------------------------------

    def fetch_response(
        self,
        verb: str,
        url: Optional[str],
        data: Body = None,
        raise_on_error: bool = False,
    ) -> Optional[requests.Response]:
        """Send the request and hand back the unread streaming response.

        The caller owns the response and must close it (``with response:``).
        """

        self._reset_call_state()
        if not self._check_url(url, raise_on_error):
            return None
        try:
            _, response = self._send(verb, url, data)
        except _TRANSPORT_ERRORS as exc:
            logger.warning("%s %s failed: %s", verb.upper(), url, exc)
            self._fail(TransportError(str(exc) or exc.__class__.__name__, url=url), raise_on_error, exc)
            return None
        self.last_status = response.status_code
        return response

    def get_response(self, url: Optional[str], raise_on_error: bool = False) -> Optional[requests.Response]:
        return self.fetch_response("GET", url, None, raise_on_error)

    def post_response(
        self, url: Optional[str], data: Body = None, raise_on_error: bool = False
    ) -> Optional[requests.Response]:
        return self.fetch_response("POST", url, data, raise_on_error)

    def put_response(
        self, url: Optional[str], data: Body = None, raise_on_error: bool = False
    ) -> Optional[requests.Response]:
        return self.fetch_response("PUT", url, data, raise_on_error)

    def delete_response(
        self, url: Optional[str], data: Body = None, raise_on_error: bool = False
    ) -> Optional[requests.Response]:
        return self.fetch_response("DELETE", url, data, raise_on_error)

    def get_bytes(self, url: Optional[str], raise_on_error: bool = False) -> Optional[bytes]:
        """GET ``url`` and return the whole body undecoded (None on failure)."""

        self._reset_call_state()
        if not self._check_url(url, raise_on_error):
            return None
        try:
            _, response = self._send("GET", url)
            with response:
                self.last_status = response.status_code
                return response.content
        except _TRANSPORT_ERRORS as exc:
            logger.warning("GET %s failed: %s", url, exc)
            self._fail(TransportError(str(exc) or exc.__class__.__name__, url=url), raise_on_error, exc)
            return None

    # ------------------------------------------------------------------
    # Redirects
    # ------------------------------------------------------------------

    def _probe(self, url: str) -> requests.Response:
        _, response = self._send("HEAD", url, allow_redirects=False)
        return response

    def resolve_redirect_chain(self, url: Optional[str], raise_on_error: bool = False) -> str:
        """Follow redirects manually; return the final URL, or "" on a cycle."""

        self._reset_call_state()
        if not self._check_url(url, raise_on_error):
            return ""
        try:
            return RedirectResolver(self._probe).resolve(url)
        except _TRANSPORT_ERRORS as exc:
            logger.warning("redirect resolution for %s failed: %s", url, exc)
            self._fail(TransportError(str(exc) or exc.__class__.__name__, url=url), raise_on_error, exc)
            return ""


__all__ = ["Body", "FetchConfig", "FetchResult", "WebSession"]
