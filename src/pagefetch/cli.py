from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import load_dotenv

from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.encoding import DetectionMode
from .workflows.web_fetch import FetchConfig, FetchResult, WebSession

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _minimal_help() -> str:
    return """pagefetch (HTTP fetch CLI)

Usage:
  pagefetch get <url> [--json] [--mode <MODE>] [--max-size <N>] [--timeout <SEC>]
  pagefetch post <url> --data <BODY> [--json] [...]
  pagefetch bytes <url> [--out <FILE>]
  pagefetch resolve <url>
  pagefetch doctor

Common options:
  --json            Print the fetch result as JSON.
  --mode <MODE>     Charset detection: statistical, meta_tag, default, force_statistical.
  --max-size <N>    Stop reading the body after N bytes (not an error).
  --timeout <SEC>   Abort the body read after SEC seconds.
  --user-agent <UA> Override the User-Agent header.
  --insecure        Skip certificate validation.
  --verbose         Log detection decisions to stderr.

Environment:
  PAGEFETCH_* variables (also read from .env) supply defaults; see `pagefetch doctor`.
"""


def _parse_mode(value: Optional[str]) -> Optional[DetectionMode]:
    if value is None:
        return None
    try:
        return DetectionMode.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--mode")


def _build_config(
    *,
    mode: Optional[str] = None,
    max_size: Optional[int] = None,
    timeout: Optional[float] = None,
    user_agent: Optional[str] = None,
    insecure: bool = False,
) -> FetchConfig:
    overrides: Dict[str, Any] = {}
    parsed_mode = _parse_mode(mode)
    if parsed_mode is not None:
        overrides["detection_mode"] = parsed_mode
    if max_size is not None:
        overrides["max_response_size"] = max_size
    if timeout is not None:
        overrides["operation_timeout"] = timeout
    if user_agent:
        overrides["user_agent"] = user_agent
    if insecure:
        overrides["verify_ssl"] = False
    return FetchConfig.from_env(**overrides)


def _emit_result(result: FetchResult, json_out: bool) -> None:
    if json_out:
        sys.stdout.write(json.dumps(result.to_dict(), ensure_ascii=False) + "\n")
        return
    if result.error:
        typer.echo(f"error: {result.error}", err=True)
    if result.text:
        typer.echo(result.text)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    load_dotenv()
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd(
    json_out: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    if json_out:
        sys.stdout.write(json.dumps(report, ensure_ascii=False) + "\n")
    else:
        typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("get", add_help_option=True)
def get_url(
    url: str = typer.Argument(..., help="URL to fetch."),
    json_out: bool = typer.Option(False, "--json", help="Print the fetch result as JSON."),
    mode: Optional[str] = typer.Option(None, "--mode", help="Charset detection mode."),
    max_size: Optional[int] = typer.Option(None, "--max-size", min=1, help="Maximum body bytes to read."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.0, help="Operation timeout in seconds."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent header."),
    insecure: bool = typer.Option(False, "--insecure", help="Skip certificate validation."),
) -> None:
    """GET a URL and print the decoded body."""
    config = _build_config(mode=mode, max_size=max_size, timeout=timeout, user_agent=user_agent, insecure=insecure)
    with WebSession(config) as session:
        result = session.fetch("GET", url)
    _emit_result(result, json_out)
    raise typer.Exit(code=1 if result.error else 0)


@app.command("post", add_help_option=True)
def post_url(
    url: str = typer.Argument(..., help="URL to post to."),
    data: str = typer.Option("", "--data", "-d", help="Request body (form-encoded by default)."),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Content-Type header."),
    json_out: bool = typer.Option(False, "--json", help="Print the fetch result as JSON."),
    mode: Optional[str] = typer.Option(None, "--mode", help="Charset detection mode."),
    max_size: Optional[int] = typer.Option(None, "--max-size", min=1, help="Maximum body bytes to read."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.0, help="Operation timeout in seconds."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent header."),
    insecure: bool = typer.Option(False, "--insecure", help="Skip certificate validation."),
) -> None:
    """POST a body to a URL and print the decoded response."""
    config = _build_config(mode=mode, max_size=max_size, timeout=timeout, user_agent=user_agent, insecure=insecure)
    if content_type:
        config.content_type = content_type
    with WebSession(config) as session:
        result = session.fetch("POST", url, data)
    _emit_result(result, json_out)
    raise typer.Exit(code=1 if result.error else 0)


@app.command("bytes", add_help_option=True)
def get_bytes(
    url: str = typer.Argument(..., help="URL to download."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the body to this file instead of stdout."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent header."),
    insecure: bool = typer.Option(False, "--insecure", help="Skip certificate validation."),
) -> None:
    """Download a URL without decoding it."""
    config = _build_config(user_agent=user_agent, insecure=insecure)
    with WebSession(config) as session:
        content = session.get_bytes(url)
        error = session.last_error
    if content is None:
        typer.echo(f"error: {error}", err=True)
        raise typer.Exit(code=1)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(content)
        typer.echo(f"wrote {len(content)} bytes to {out}", err=True)
    else:
        typer.echo(content, nl=False)
    raise typer.Exit(code=0)


@app.command("resolve", add_help_option=True)
def resolve_url(
    url: str = typer.Argument(..., help="URL whose redirect chain should be followed."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent header."),
    insecure: bool = typer.Option(False, "--insecure", help="Skip certificate validation."),
) -> None:
    """Follow redirects hop by hop and print the final URL."""
    config = _build_config(user_agent=user_agent, insecure=insecure)
    with WebSession(config) as session:
        final_url = session.resolve_redirect_chain(url)
        error = session.last_error
    if not final_url:
        typer.echo(f"error: {error or 'redirect cycle detected'}", err=True)
        raise typer.Exit(code=1)
    typer.echo(final_url)
    raise typer.Exit(code=0)


if __name__ == "__main__":  # pragma: no cover
    app()
