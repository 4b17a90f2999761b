from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from .pipeline import run_rehost
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.rehost_config import RehostConfig

load_dotenv(override=True)

app = typer.Typer(add_help_option=True, no_args_is_help=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.callback()
def main() -> None:
    """Rehost OneDrive-linked images in an HTML document onto imgbox."""


@app.command("doctor")
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report(RehostConfig.from_env())
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("run")
def run_cmd(
    input_path: Path = typer.Argument(..., help="HTML document to rewrite."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the rewritten document."),
    download_dir: Optional[Path] = typer.Option(None, "--download-dir", help="Shared directory for fetched files."),
    ledger: Optional[Path] = typer.Option(None, "--ledger", help="Resume ledger JSON path."),
    artifacts: Optional[Path] = typer.Option(None, "--artifacts", help="Directory for run artifacts (no subdir)."),
    rewrite_links: Optional[bool] = typer.Option(
        None, "--rewrite-links/--keep-links", help="Also point enclosing links at the full-size upload."
    ),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", min=0, help="Extra fetch attempts per resource."),
    retry_delay: Optional[float] = typer.Option(None, "--retry-delay", min=0.0, help="Seconds between fetch attempts."),
    fetch_timeout: Optional[float] = typer.Option(None, "--fetch-timeout", min=1.0, help="Seconds to wait for a download."),
    attempt_deadline: Optional[float] = typer.Option(
        None, "--attempt-deadline", min=1.0, help="Hard cap in seconds on one whole fetch attempt."
    ),
    failure_ceiling: Optional[int] = typer.Option(None, "--failure-ceiling", min=0, help="Abort once fetch failures exceed this."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Files per upload batch."),
    batch_delay: Optional[float] = typer.Option(None, "--batch-delay", min=0.0, help="Seconds between upload batches."),
    upload_retries: Optional[int] = typer.Option(None, "--upload-retries", min=0, help="Retry rounds for rejected uploads."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window."),
    user_data_dir: Optional[Path] = typer.Option(None, "--user-data-dir", help="Persistent browser profile (login session)."),
    json_out: bool = typer.Option(False, "--json", help="Print the run summary JSON to stdout."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if some resources fail."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Fetch, upload and rewrite every OneDrive-backed image in INPUT_PATH."""
    _configure_logging(verbose)
    config = RehostConfig.from_env()
    config.input_path = input_path
    config.output_path = output
    config.artifacts_dir = artifacts
    if download_dir is not None:
        config.download_dir = download_dir
    if ledger is not None:
        config.ledger_path = ledger
    if rewrite_links is not None:
        config.rewrite_links = rewrite_links
    if max_retries is not None:
        config.max_retries = max_retries
    if retry_delay is not None:
        config.retry_delay = retry_delay
    if fetch_timeout is not None:
        config.fetch_timeout = fetch_timeout
    if attempt_deadline is not None:
        config.attempt_deadline = attempt_deadline
    if failure_ceiling is not None:
        config.failure_ceiling = failure_ceiling
    if batch_size is not None:
        config.batch_size = batch_size
    if batch_delay is not None:
        config.batch_delay = batch_delay
    if upload_retries is not None:
        config.upload_retries = upload_retries
    if headed:
        config.headless = False
    if user_data_dir is not None:
        config.user_data_dir = user_data_dir

    try:
        summary, exit_code = run_rehost(config, soft_fail=soft_fail)
    except FileNotFoundError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    else:
        counts = summary.get("counts") or {}
        typer.echo(
            f"patched {counts.get('patched', 0)}/{counts.get('placeholders', 0)} placeholders "
            f"({counts.get('fetch_failed', 0)} fetch failures, {counts.get('upload_failed', 0)} upload failures)"
        )
        if summary.get("output"):
            typer.echo(f"output: {summary['output']}")
        if summary.get("aborted"):
            typer.echo("run aborted: fetch failure budget exceeded", err=True)
    raise typer.Exit(code=exit_code)
