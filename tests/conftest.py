import gzip
import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterator, Optional

import pytest

UTF8_BODY = "<html><body>héllo wörld – ✓ naïve</body></html>"
SJIS_TEXT = "日本語のページ"
SJIS_BODY = b'<html><head><meta charset="shift_jis"></head><body>' + SJIS_TEXT.encode("shift_jis") + b"</body></html>"
BIG_BODY = b"a" * 5000
STALL_HEAD = b"x" * 64
STALL_TAIL = b"y" * 4096
STALL_SECONDS = 0.3


class _Handler(BaseHTTPRequestHandler):
    server_version = "pagefetch-test"

    def log_message(self, format: str, *args: object) -> None:
        pass

    def _send(
        self,
        status: int,
        body: bytes = b"",
        content_type: Optional[str] = "text/html",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD" and body:
            self.wfile.write(body)

    def _redirect(self, status: int, location: str) -> None:
        self._send(status, b"", content_type=None, headers={"Location": location})

    def _base(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length else b""

    def _route(self) -> None:
        path = self.path.split("?", 1)[0]
        if path == "/utf8":
            self._send(200, UTF8_BODY.encode("utf-8"), "text/html; charset=UTF-8")
        elif path == "/sjis":
            self._send(200, SJIS_BODY, "text/html")
        elif path == "/big":
            self._send(200, BIG_BODY, "text/plain; charset=us-ascii")
        elif path == "/empty":
            self._send(200, b"", "text/plain")
        elif path == "/gzip":
            self._send(
                200,
                gzip.compress(UTF8_BODY.encode("utf-8")),
                "text/html; charset=utf-8",
                headers={"Content-Encoding": "gzip"},
            )
        elif path == "/stall":
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(STALL_HEAD) + len(STALL_TAIL)))
            self.end_headers()
            if self.command == "HEAD":
                return
            self.wfile.write(STALL_HEAD)
            self.wfile.flush()
            time.sleep(STALL_SECONDS)
            self.wfile.write(STALL_TAIL)
        elif path == "/set-cookie":
            self._send(200, b"ok", "text/plain", headers={"Set-Cookie": "token=abc; Path=/"})
        elif path == "/echo-cookie":
            self._send(200, (self.headers.get("Cookie") or "").encode("ascii"), "text/plain")
        elif path == "/echo":
            payload = {
                "method": self.command,
                "body": self._read_body().decode("latin-1"),
                "content_type": self.headers.get("Content-Type"),
                "user_agent": self.headers.get("User-Agent"),
                "referer": self.headers.get("Referer"),
                "authorization": self.headers.get("Authorization"),
            }
            self._send(200, json.dumps(payload).encode("utf-8"), "application/json; charset=utf-8")
        elif path == "/redirect/absolute":
            self._redirect(301, f"{self._base()}/final")
        elif path == "/redirect/hop":
            self._redirect(302, f"{self._base()}/redirect/absolute")
        elif path == "/final":
            self._send(200, b"final", "text/plain; charset=utf-8")
        elif path == "/cycle/a":
            self._redirect(302, f"{self._base()}/cycle/b")
        elif path == "/cycle/b":
            self._redirect(302, f"{self._base()}/cycle/a")
        elif path == "/relative/start":
            self._redirect(302, "next")
        elif path == "/relative/start/next":
            self._send(200, b"relative", "text/plain; charset=utf-8")
        elif path == "/redirect/no-location":
            self._send(302, b"", content_type=None)
        else:
            self._send(404, b"not found", "text/plain")

    do_GET = _route
    do_POST = _route
    do_PUT = _route
    do_DELETE = _route
    do_HEAD = _route


@pytest.fixture(scope="session")
def http_server() -> Iterator[str]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "PAGEFETCH_USER_AGENT",
        "PAGEFETCH_ENCODING",
        "PAGEFETCH_DETECTION_MODE",
        "PAGEFETCH_CONNECT_TIMEOUT",
        "PAGEFETCH_READ_TIMEOUT",
        "PAGEFETCH_OPERATION_TIMEOUT",
        "PAGEFETCH_BUFFER_SIZE",
        "PAGEFETCH_MAX_RESPONSE_SIZE",
        "PAGEFETCH_CONNECTION_LIMIT",
        "PAGEFETCH_PROXY",
        "PAGEFETCH_INSECURE",
        "PAGEFETCH_AUTO_REDIRECT",
    ):
        monkeypatch.delenv(name, raising=False)
