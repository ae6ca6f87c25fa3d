"""Operator CLI using Typer."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer

from .ledger import ResourceLedger, create_store, parse_legacy_lines
from .logging_utils import configure_logging


app = typer.Typer(pretty_exceptions_short=True, no_args_is_help=True)

LEDGER_OPTION = typer.Option(
    "jsonl://./links.jsonl",
    "--ledger",
    envvar="LINKDROP_LEDGER_URL",
    help="Ledger store URL (jsonl:///path, sqlite:///path, memory://).",
)


def _open_ledger(url: str) -> ResourceLedger:
    return ResourceLedger(create_store(url))


def _emit(payload: dict) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False))


@app.command()
def load(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file, one link per line."),
    ledger_url: str = LEDGER_OPTION,
) -> None:
    """Append links to the pool; ``link||claimant`` lines keep their claim."""
    ledger = _open_ledger(ledger_url)
    with source.open("r", encoding="utf-8") as fh:
        added = ledger.load(parse_legacy_lines(fh))
    _emit({"added": added, **ledger.stats().to_dict()})


@app.command()
def status(ledger_url: str = LEDGER_OPTION) -> None:
    """Print pool counters."""
    _emit(_open_ledger(ledger_url).stats().to_dict())


@app.command()
def claim(requester_id: str, ledger_url: str = LEDGER_OPTION) -> None:
    result = _open_ledger(ledger_url).claim(requester_id)
    _emit({"status": result.status.value, "requester_id": requester_id, "resource_value": result.resource_value})
    if result.resource_value is None:
        raise typer.Exit(1)


@app.command()
def release(requester_id: str, ledger_url: str = LEDGER_OPTION) -> None:
    result = _open_ledger(ledger_url).release(requester_id)
    _emit({"status": result.status.value, "requester_id": requester_id, "resource_value": result.resource_value})
    if result.resource_value is None:
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(5000, "--port", envvar="PORT"),
) -> None:
    """Run the webhook receiver with uvicorn."""
    import uvicorn

    from .config import get_settings
    from .webhook import create_app

    settings = get_settings()
    configure_logging(getattr(logging, settings.log_level, logging.INFO))
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_config=None)


def main() -> None:
    """CLI wrapper for console_scripts compatibility."""
    app()


if __name__ == "__main__":
    main()
