from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .encoding import DetectionMode
from .fetcher_utils import collect_environment_warnings, env_bool


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def redact_proxy(proxy: str) -> str:
    """Hide proxy credentials but keep scheme, host and port readable."""

    raw = (proxy or "").strip()
    try:
        parsed = urlparse(raw)
        port = parsed.port
    except ValueError:
        return redact_value(raw)
    if not parsed.hostname or parsed.username is None:
        return raw
    netloc = parsed.hostname if port is None else f"{parsed.hostname}:{port}"
    return parsed._replace(netloc=f"***@{netloc}").geturl()


def _charset_normalizer_version() -> Optional[str]:
    try:
        import charset_normalizer
    except ImportError:
        return None
    return getattr(charset_normalizer, "__version__", "unknown")


def build_doctor_report() -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = value
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    version = _charset_normalizer_version()
    add_check(
        "charset_normalizer",
        version is not None,
        detail="Statistical charset detection enabled" if version else "Statistical charset detection unavailable",
        remedy="pip install charset-normalizer",
        level="warn",
        value=version,
    )

    proxy = os.getenv("PAGEFETCH_PROXY")
    if proxy and proxy.strip():
        add_check(
            "PAGEFETCH_PROXY",
            True,
            detail="Requests are routed through a proxy",
            level="info",
            value=redact_proxy(proxy),
        )
    else:
        add_check("PAGEFETCH_PROXY", False, detail="Direct connections", level="info")

    insecure = env_bool("PAGEFETCH_INSECURE")
    add_check(
        "tls_verification",
        not insecure,
        detail="Certificates are validated" if not insecure else "Certificate validation disabled",
        remedy="Unset PAGEFETCH_INSECURE to validate certificates.",
        level="info",
    )

    mode_raw = os.getenv("PAGEFETCH_DETECTION_MODE") or DetectionMode.STATISTICAL.value
    try:
        mode: Optional[DetectionMode] = DetectionMode.parse(mode_raw)
    except ValueError:
        mode = None
    add_check(
        "PAGEFETCH_DETECTION_MODE",
        mode is not None,
        detail=f"Detection mode: {mode.value}" if mode else f"Unknown detection mode {mode_raw!r}",
        remedy="Use one of: " + ", ".join(m.value for m in DetectionMode),
        level="warn",
        value=mode.value if mode else mode_raw,
    )

    blocking = [w for w in report["environment_warnings"] if w.get("code") != "tls_verification_disabled"]
    if blocking:
        report["ok"] = False

    return report


def _check_lines(check: Dict[str, Any]) -> List[str]:
    mark = "ok" if check.get("status") == "ok" else check.get("level", "info").upper()
    head = f"{mark:<5} {check.get('name', 'check')}"
    if check.get("value"):
        head += f" = {check['value']}"
    lines = [head]
    if check.get("detail"):
        lines.append(f"      {check['detail']}")
    if check.get("remedy") and check.get("status") != "ok":
        lines.append(f"      fix: {check['remedy']}")
    return lines


def format_doctor_report(report: Dict[str, Any]) -> str:
    """Render a report as plain text; checks first, then environment warnings."""

    verdict = "healthy" if report.get("ok", True) else "needs attention"
    lines: List[str] = [f"pagefetch doctor: {verdict} ({report.get('generated_at')})", ""]
    for check in report.get("checks", []):
        lines.extend(_check_lines(check))
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.extend(["", "Environment warnings:"])
        for warning in warnings:
            lines.append(f"  {warning.get('code', 'warning')}: {warning.get('message', '')}")
            if warning.get("remedy"):
                lines.append(f"      fix: {warning['remedy']}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "format_doctor_report", "redact_proxy", "redact_value"]
