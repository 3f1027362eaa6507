"""CLI entry point.

Provides:
- run: execute one script, framing input and output as JSON on stdin/stdout
- serve: run the HTTP API
"""

import json
import sys
from typing import Annotated, Optional

import typer

from script_runner.config import get_settings
from script_runner.sandbox import SandboxStartupError, execute_script, limits_from_settings

app = typer.Typer(
    name="script-runner",
    help="Run untrusted JavaScript under time and heap budgets",
    add_completion=False,
    no_args_is_help=True,
)


def _script_from_stdin() -> str:
    raw = sys.stdin.read()
    try:
        payload = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as e:
        typer.echo(f"invalid JSON on stdin: {e}", err=True)
        raise typer.Exit(code=2)
    script = payload.get("script") if isinstance(payload, dict) else None
    if not isinstance(script, str):
        typer.echo("stdin JSON must contain a 'script' string", err=True)
        raise typer.Exit(code=2)
    return script


@app.command()
def run(
    script: Annotated[
        Optional[str],
        typer.Option("--script", "-s", help='Script text; {"script": ...} JSON is read from stdin when omitted'),
    ] = None,
    timeout_ms: Annotated[
        int,
        typer.Option("--timeout-ms", min=0, help="Time budget in milliseconds (0 = configured default)"),
    ] = 0,
    max_heap_bytes: Annotated[
        int,
        typer.Option("--max-heap-bytes", min=0, help="Heap ceiling in bytes (0 = configured default)"),
    ] = 0,
) -> None:
    """Run one script and print {"result", "error"} as JSON.

    Exits 0 on success, 1 when the script failed, 2 when the sandbox itself
    could not run it.
    """
    if script is None:
        script = _script_from_stdin()

    limits = limits_from_settings(get_settings().sandbox, timeout_ms or None, max_heap_bytes or None)
    try:
        outcome = execute_script(script, limits)
    except SandboxStartupError as e:
        typer.echo(f"sandbox unavailable: {e.detail}", err=True)
        raise typer.Exit(code=2)

    typer.echo(json.dumps(outcome.as_response()))
    raise typer.Exit(code=0 if outcome.ok else 1)


@app.command()
def serve(
    host: Annotated[
        str,
        typer.Option("--host", "-h", help="Host to bind to"),
    ] = "",
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to bind to"),
    ] = 0,
    workers: Annotated[
        int,
        typer.Option("--workers", "-w", help="Number of worker processes"),
    ] = 0,
) -> None:
    """Start the HTTP API with uvicorn.

    Defaults are loaded from settings (SERVER_* env vars).
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "script_runner.main:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        workers=workers or settings.server.workers,
        log_level=settings.debug.log_level.lower(),
    )


if __name__ == "__main__":
    app()
