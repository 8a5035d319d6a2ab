from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import requests
import typer

from .collector import CollectOptions, authenticate, collect
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import CredentialsNotFound, HarvestError
from .workflows.metadata import strip_corpus

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _minimal_help() -> str:
    return """Harvester (catalog collector)

Usage:
  harvester collect [SUFFIX] [--v4-only] [--resume] [--retry-failed N] [--verbose]
  harvester metadata <DIR> [--json]
  harvester auth
  harvester doctor

Common options:
  --verbose       Debug logging.
  --v4-only       Skip the v3 framework formats.
  --resume        Continue the run in cache/<date>[-SUFFIX] after the last completed unit.

Environment:
  TWP_EMAIL / TWP_PASSWORD    Explicit credentials.
  HARVEST_CREDENTIALS_FILE    JSON credentials file (default ./twp-credentials.json).
  HARVEST_CACHE_DIR           Run directories and cookie store (default ./cache).
  HARVEST_DOCS_DIR            Framework docs to copy (default ./docs).
  HARVEST_CONCURRENCY         Bulk fetch ceiling (default 10).
  HARVEST_OP_BIN              1Password CLI binary (default op).
"""


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
) -> None:
    _configure_logging(verbose)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("collect", add_help_option=True)
def collect_cmd(
    suffix: Optional[str] = typer.Argument(None, help="Label appended to the date directory."),
    v4_only: bool = typer.Option(False, "--v4-only", help="Do not include v3 formats."),
    resume: bool = typer.Option(False, "--resume", help="Resume from the last completed unit."),
    retry_failed: int = typer.Option(0, "--retry-failed", min=0, help="Re-fetch only failed addresses N times."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Harvest the whole catalog into cache/<date>[-SUFFIX]."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    options = CollectOptions(suffix=suffix, with_v3=not v4_only, resume=resume, retry_failed_rounds=retry_failed)
    try:
        summary = collect(options)
    except CredentialsNotFound as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except (HarvestError, requests.RequestException, OSError) as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    typer.echo(f"Output: {summary.run_dir}")
    typer.echo(f"Components: {summary.components}")
    if summary.skipped_variants or summary.incomplete_variants or summary.failed_kits:
        typer.echo(
            "Incomplete: "
            f"{len(summary.skipped_variants)} skipped variant(s), "
            f"{len(summary.incomplete_variants)} partial variant(s), "
            f"{len(summary.failed_kits)} failed kit(s); re-run with --resume",
            err=True,
        )


@app.command("metadata", add_help_option=True)
def metadata_cmd(
    directory: Path = typer.Argument(..., help="Directory containing component NDJSON files."),
    json_out: bool = typer.Option(False, "--json", help="Print stats JSON to stdout."),
) -> None:
    """Strip source code from record streams, keeping derived metadata."""
    try:
        stats = strip_corpus(directory)
    except FileNotFoundError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except (ValueError, OSError) as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        sys.stdout.write(json.dumps(stats, ensure_ascii=False) + "\n")


@app.command("auth", add_help_option=True)
def auth_cmd() -> None:
    """Log in and persist the cookie store."""
    options = CollectOptions()
    try:
        session = authenticate(options)
    except CredentialsNotFound as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except (HarvestError, requests.RequestException) as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    typer.echo(f"Cookies saved to: {session.cookie_path}")


if __name__ == "__main__":
    app()
