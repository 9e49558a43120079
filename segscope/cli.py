from __future__ import annotations

import json
from pathlib import Path

import typer
import uvicorn

from segscope import __version__
from segscope.analyze.service import AnalyzerService
from segscope.errors import AnalysisError

app = typer.Typer(help="Inspect Lucene index archives.", add_completion=False)


def _version_callback(
    ctx: typer.Context,
    param: typer.CallbackParam,
    value: bool,
) -> bool:
    if value:
        typer.echo(__version__)
        raise typer.Exit()
    return value


@app.callback()
def _main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Print the version and exit.",
    ),
) -> None:
    """Root entry point."""


@app.command(help="Run the HTTP API.")
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Listen address."),
    port: int = typer.Option(8000, "--port", help="HTTP port."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
) -> None:
    uvicorn.run("segscope.api.main:app", host=host, port=port, reload=reload, factory=False)


@app.command(help="Analyze a local .zip, .tar, .tar.gz or .tgz archive and print the report.")
def analyze(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    pretty: bool = typer.Option(True, "--pretty/--compact", help="Indent the JSON output."),
) -> None:
    service = AnalyzerService()
    try:
        report = service.analyze_path(archive)
    except AnalysisError as error:
        typer.echo(f"error: {error.message}", err=True)
        raise typer.Exit(code=2) from error
    typer.echo(json.dumps(report.to_dict(), indent=2 if pretty else None))


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
