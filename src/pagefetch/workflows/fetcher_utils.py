"""Shared helper functions used by the fetch session and CLI."""

from __future__ import annotations

import os
from typing import Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from .encoding import DetectionMode

ENV_PREFIX = "PAGEFETCH_"
_NUMERIC_ENV = (
    "PAGEFETCH_CONNECT_TIMEOUT",
    "PAGEFETCH_READ_TIMEOUT",
    "PAGEFETCH_OPERATION_TIMEOUT",
    "PAGEFETCH_BUFFER_SIZE",
    "PAGEFETCH_MAX_RESPONSE_SIZE",
    "PAGEFETCH_CONNECTION_LIMIT",
)
_INT_MINIMUMS = {
    "PAGEFETCH_BUFFER_SIZE": 1,
    "PAGEFETCH_MAX_RESPONSE_SIZE": 0,
    "PAGEFETCH_CONNECTION_LIMIT": 1,
}
_FALSY = {"0", "false", "no", "off", ""}


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    return h


def normalize_url(u: str) -> str:
    """Normalize a URL for dedup/cycle detection.

    - Keep path characters as-is (path-sensitive sites can 404)
    - Lower-case and IDNA-encode the host
    - Remove default ports, keep any other port
    """
    raw = (u or "").strip()
    try:
        p = urlparse(raw)
        port = p.port
    except ValueError:
        return raw
    host = idna_normalize(p.hostname or "")
    if not host:
        return urlunparse(p)
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port and not ((p.scheme == "http" and port == 80) or (p.scheme == "https" and port == 443)):
        netloc = f"{host}:{port}"
    if p.username:
        userinfo = p.username if p.password is None else f"{p.username}:{p.password}"
        netloc = f"{userinfo}@{netloc}"
    return urlunparse(p._replace(netloc=netloc))


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_int(name: str, default: Optional[int] = None, minimum: Optional[int] = None) -> Optional[int]:
    """Read an int; unparsable values and values below ``minimum`` give ``default``."""
    try:
        raw = os.getenv(name, "")
        value = int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default
    if value is not None and minimum is not None and value < minimum:
        return default
    return value


def env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in _FALSY


def collect_environment_warnings() -> List[Dict[str, str]]:
    """Return warnings for malformed or risky PAGEFETCH_* settings."""

    warnings: List[Dict[str, str]] = []
    for name in _NUMERIC_ENV:
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            continue
        try:
            value = int(raw) if name in _INT_MINIMUMS else float(raw)
        except ValueError:
            warnings.append(
                {
                    "code": f"{name[len(ENV_PREFIX):].lower()}_invalid",
                    "message": f"{name}={raw!r} is not a valid number; the default is used.",
                    "remedy": f"Set {name} to a numeric value or unset it.",
                }
            )
            continue
        minimum = _INT_MINIMUMS.get(name)
        if minimum is not None and value < minimum:
            warnings.append(
                {
                    "code": f"{name[len(ENV_PREFIX):].lower()}_out_of_range",
                    "message": f"{name}={raw!r} is below {minimum}; the default is used.",
                    "remedy": f"Set {name} to at least {minimum} or unset it.",
                }
            )
    mode = os.getenv("PAGEFETCH_DETECTION_MODE")
    if mode and mode.strip():
        try:
            DetectionMode.parse(mode)
        except ValueError:
            choices = ", ".join(m.value for m in DetectionMode)
            warnings.append(
                {
                    "code": "detection_mode_unknown",
                    "message": f"PAGEFETCH_DETECTION_MODE={mode!r} is not recognized; statistical is used.",
                    "remedy": f"Use one of: {choices}.",
                }
            )
    if env_bool("PAGEFETCH_INSECURE"):
        warnings.append(
            {
                "code": "tls_verification_disabled",
                "message": "Certificate validation is turned off for every request.",
                "remedy": "Unset PAGEFETCH_INSECURE unless the targets use self-signed certificates.",
            }
        )
    return warnings


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM.") == "example.com"
    assert normalize_url("HTTP://Example.COM:80/a") == "http://example.com/a"
    assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"


sanity_check()

__all__ = [
    "ENV_PREFIX",
    "idna_normalize",
    "normalize_url",
    "env_str",
    "env_int",
    "env_float",
    "env_bool",
    "collect_environment_warnings",
    "sanity_check",
]
