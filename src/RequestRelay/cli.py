# === NAVMAP v1 ===
# {
#   "module": "RequestRelay.cli",
#   "purpose": "Typer command line: serve, send, check-egress, history",
#   "sections": [
#     {"id": "setup", "name": "Setup", "anchor": "IMP", "kind": "infra"},
#     {"id": "commands", "name": "CLI Commands", "anchor": "CMDS", "kind": "commands"}
#   ]
# }
# === /NAVMAP ===

"""RequestRelay command line.

Commands:
- ``relay serve``: run the HTTP surface under uvicorn
- ``relay send URL``: relay one request and print the normalized payload
- ``relay check-egress HOST``: show the egress policy decision for a host
- ``relay history OWNER``: list saved history from the SQLite store

Example:
    $ relay send https://httpbin.org/get -H 'Accept: application/json'
    $ relay check-egress 10.0.0.5 --restricted
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

import anyio
import typer
from rich.console import Console
from rich.table import Table

from RequestRelay import __version__
from RequestRelay.logging_config import setup_logging
from RequestRelay.proxy.egress import EgressPolicyGuard
from RequestRelay.proxy.engine import ProxyEngine
from RequestRelay.proxy.types import NormalizedResult, Success
from RequestRelay.settings import RelaySettings, default_db_path, load_settings
from RequestRelay.storage import DEFAULT_HISTORY_LIMIT, SQLiteStore

# ============================================================================
# SETUP (IMP)
# ============================================================================

app = typer.Typer(help="Relay arbitrary HTTP requests and normalize the responses.")


def _settings(restricted: Optional[bool] = None, db: Optional[Path] = None) -> RelaySettings:
    settings = load_settings()
    if restricted is not None:
        settings.proxy.restricted_egress = restricted
    if db is not None:
        settings.db_path = db
    return settings


def _parse_headers(values: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"RequestRelay {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Configure logging before any command runs."""
    config = load_settings().logging
    if log_level:
        config.level = log_level
    if json_logs:
        config.json_output = True
    setup_logging(config)


# ============================================================================
# CLI COMMANDS (CMDS)
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", help="Port to bind"),
    restricted: Optional[bool] = typer.Option(
        None, "--restricted/--unrestricted", help="Force the egress policy on or off"
    ),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite file for history and collections"),
) -> None:
    """Run the HTTP surface."""
    import uvicorn

    from RequestRelay.server import create_app

    settings = _settings(restricted, db)
    application = create_app(settings)
    uvicorn.run(application, host=host, port=port, log_level=settings.logging.level.lower())


@app.command()
def send(
    url: str = typer.Argument(..., help="Absolute http(s) URL"),
    method: str = typer.Option("GET", "-X", "--method", help="HTTP method"),
    header: List[str] = typer.Option([], "-H", "--header", help="Header as 'Name: value' (repeatable)"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Request body"),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", help="Per-call timeout in milliseconds"),
    bearer: Optional[str] = typer.Option(None, "--bearer", help="Bearer token to inject"),
    restricted: Optional[bool] = typer.Option(
        None, "--restricted/--unrestricted", help="Force the egress policy on or off"
    ),
) -> None:
    """Relay one request and print the normalized result as JSON.

    Exits 0 when the upstream answered with a non-error status, 1 otherwise.
    """
    raw: Dict[str, object] = {"url": url, "method": method, "headers": _parse_headers(header)}
    if data is not None:
        raw["body"] = data
    if timeout_ms is not None:
        raw["timeoutMs"] = timeout_ms
    if bearer:
        raw["auth"] = {"type": "bearer", "token": bearer}

    settings = _settings(restricted)

    async def _run() -> NormalizedResult:
        async with ProxyEngine(settings) as engine:
            return await engine.execute(raw)

    result = anyio.run(_run)
    typer.echo(json.dumps(result.to_payload(), indent=2, ensure_ascii=False, default=str))
    if not isinstance(result, Success):
        raise typer.Exit(1)


@app.command("check-egress")
def check_egress(
    host: str = typer.Argument(..., help="Hostname or IP literal"),
    restricted: Optional[bool] = typer.Option(
        None, "--restricted/--unrestricted", help="Force the egress policy on or off"
    ),
) -> None:
    """Show whether the egress policy allows HOST. Exits 1 when denied."""
    settings = _settings(restricted)
    guard = EgressPolicyGuard(restricted=settings.restricted_egress)
    decision = guard.evaluate(host)
    mode = "restricted" if guard.restricted else "unrestricted"
    if decision.allowed:
        typer.echo(f"allowed: {host} ({mode})")
        return
    typer.echo(f"denied: {host} ({mode}): {decision.reason}")
    raise typer.Exit(1)


@app.command()
def history(
    owner: str = typer.Argument(..., help="Owner key"),
    limit: int = typer.Option(DEFAULT_HISTORY_LIMIT, "--limit", min=1, help="Maximum entries"),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite file (defaults to the configured path)"),
    fmt: str = typer.Option("table", "--format", help="Output format: 'json' or 'table'"),
) -> None:
    """List saved history for OWNER, newest first."""
    settings = _settings(db=db)
    store = SQLiteStore(settings.db_path or default_db_path())
    try:
        entries = store.list(owner, limit=limit)
    finally:
        store.close()

    if fmt == "json":
        typer.echo(json.dumps([entry.to_payload() for entry in entries], indent=2))
        return
    if not entries:
        typer.echo(f"No history for {owner}")
        return

    table = Table(title=f"History for {owner}")
    table.add_column("ID", style="cyan")
    table.add_column("Method", style="magenta")
    table.add_column("URL")
    table.add_column("Status", justify="right")
    table.add_column("Duration (ms)", justify="right")
    for entry in entries:
        table.add_row(
            entry.id or "",
            entry.method,
            entry.url,
            "-" if entry.response_status is None else str(entry.response_status),
            "-" if entry.duration_ms is None else str(entry.duration_ms),
        )
    Console().print(table)


__all__ = ["app"]
