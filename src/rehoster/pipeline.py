from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup  # type: ignore

from .workflows.errors import FailureBudgetExceeded
from .workflows.fetch_orchestrator import FetchOrchestrator, FetchOutcome, RetryPolicy
from .workflows.imgbox import ImgboxGallery
from .workflows.ledger import LedgerEntry, ResumeLedger
from .workflows.links import ResourceLink, extract_resource_links
from .workflows.onedrive import OneDriveFetcher
from .workflows.patcher import load_document, patch_placeholder, write_document
from .workflows.reconcile import ReconcileReport, UploadTask, reconcile
from .workflows.rehost_config import (
    DEFAULT_ARTIFACTS_ROOT,
    FAILED_DOWNLOADS_NAME,
    FAILED_UPLOADS_NAME,
    SUMMARY_NAME,
    UPLOADED_NAMES_NAME,
    RehostConfig,
)
from .workflows.rehost_utils import collect_environment_warnings
from .workflows.upload import UploadBatcher, UploadItem, UploadOptions, UploadReport

logger = logging.getLogger(__name__)


def generate_run_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"{stamp}_{suffix}"


def resolve_run_dir(artifacts_dir: Optional[Path]) -> Tuple[Path, str]:
    run_id = generate_run_id()
    if artifacts_dir:
        return artifacts_dir, run_id
    return DEFAULT_ARTIFACTS_ROOT / run_id, run_id


def default_output_path(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}.rehosted{input_path.suffix or '.html'}")


@dataclass
class RunStats:
    resources: int = 0
    placeholders: int = 0
    cached: int = 0
    local: int = 0
    fetch_attempts: int = 0
    fetch_failed: List[str] = field(default_factory=list)
    uploaded: int = 0
    upload_failed: List[str] = field(default_factory=list)
    upload_error: Optional[str] = None
    mapping_failures: int = 0
    patched: int = 0
    aborted: bool = False
    error: Optional[str] = None

    @property
    def has_failures(self) -> bool:
        return bool(self.fetch_failed or self.upload_failed or self.upload_error or self.mapping_failures)


def patch_group(placeholders: Sequence[Any], url: str, thumbnail_url: str, *, rewrite_links: bool) -> int:
    patched = 0
    for img in placeholders:
        if patch_placeholder(img, url, thumbnail_url, rewrite_links=rewrite_links):
            patched += 1
    return patched


async def _resolve_resources(orchestrator: FetchOrchestrator, links: Sequence[ResourceLink]) -> FetchOutcome:
    try:
        return await orchestrator.resolve_all(links)
    finally:
        close = getattr(orchestrator.fetcher, "close", None)
        if close is not None:
            await close()


def rehost_document(
    soup: BeautifulSoup,
    config: RehostConfig,
    *,
    ledger: ResumeLedger,
    fetcher: Any,
    gallery_factory: Callable[[], Any],
    run_dir: Path,
    stats: RunStats,
    fetch_sleep: Optional[Callable[[float], Any]] = None,
    upload_sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Run every stage against ``soup`` in place.

    Raises :class:`FailureBudgetExceeded` after the ledger has been flushed
    when too many resources could not be fetched.
    """

    links = extract_resource_links(
        soup,
        prefixes=config.locator_prefixes,
        rehosted_suffixes=config.rehosted_host_suffixes,
    )
    stats.resources = len(links)
    stats.placeholders = sum(len(link.placeholders) for link in links)

    policy = RetryPolicy(
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        timeout=config.fetch_timeout,
        attempt_deadline=config.attempt_deadline,
    )
    orchestrator_kwargs: Dict[str, Any] = {"policy": policy, "failure_ceiling": config.failure_ceiling}
    if fetch_sleep is not None:
        orchestrator_kwargs["sleep"] = fetch_sleep
    orchestrator = FetchOrchestrator(fetcher, ledger, config.download_dir, **orchestrator_kwargs)
    try:
        outcome = asyncio.run(_resolve_resources(orchestrator, links))
    except FailureBudgetExceeded:
        stats.aborted = True
        raise
    finally:
        stats.fetch_attempts = orchestrator.fetch_attempts
        stats.fetch_failed = list(orchestrator.failures.failed)
    stats.cached = len(outcome.cached)
    stats.local = len(outcome.local)

    for resolved in outcome.cached:
        entry = resolved.entry
        if entry is None or not entry.is_reconciled:
            continue
        stats.patched += patch_group(
            resolved.link.placeholders,
            entry.remote_url,
            entry.remote_thumbnail_url,
            rewrite_links=config.rewrite_links,
        )

    tasks = [
        UploadTask(
            locator=resolved.link.locator,
            local_path=resolved.local_path,
            display_name=resolved.local_path.name,
            placeholders=resolved.link.placeholders,
        )
        for resolved in outcome.local
        if resolved.local_path is not None
    ]
    if not tasks:
        return

    batcher = UploadBatcher(
        gallery_factory(),
        ledger=ledger,
        batch_size=config.batch_size,
        batch_delay=config.batch_delay,
        retry_rounds=config.upload_retries,
        options=UploadOptions(
            content_type=config.content_type,
            thumbnail_size=config.thumbnail_size,
            comments_enabled=config.comments_enabled,
        ),
        dump_dir=run_dir,
        sleep=upload_sleep,
    )
    upload_report: UploadReport = batcher.upload(
        [UploadItem(source=task.local_path, display_name=task.display_name, locator=task.locator) for task in tasks]
    )
    stats.uploaded = len(upload_report.uploaded)
    stats.upload_failed = [item.display_name for item in upload_report.failed]
    if upload_report.error is not None:
        stats.upload_error = str(upload_report.error)

    recon: ReconcileReport = reconcile(tasks, upload_report.uploaded, dump_path=run_dir / UPLOADED_NAMES_NAME)
    stats.mapping_failures = recon.mapping_failures
    for task, image in recon.matched:
        entry = ledger.get(task.locator) or LedgerEntry(local_filename=task.local_path.name)
        entry.remote_url = image.url
        entry.remote_thumbnail_url = image.thumbnail_url
        ledger.set(task.locator, entry)
        stats.patched += patch_group(task.placeholders, image.url, image.thumbnail_url, rewrite_links=config.rewrite_links)


def _build_summary(
    config: RehostConfig,
    run_id: str,
    run_dir: Path,
    started_at: datetime,
    finished_at: datetime,
    stats: RunStats,
    output_path: Optional[Path],
) -> Dict[str, Any]:
    counts = asdict(stats)
    fetch_failed = counts.pop("fetch_failed")
    upload_failed = counts.pop("upload_failed")
    upload_error = counts.pop("upload_error")
    aborted = counts.pop("aborted")
    error = counts.pop("error")
    counts["fetch_failed"] = len(fetch_failed)
    counts["upload_failed"] = len(upload_failed)
    return {
        "run_id": run_id,
        "run_dir": str(run_dir),
        "input": str(config.input_path),
        "output": str(output_path) if output_path else None,
        "ledger": str(config.ledger_path),
        "started_at": started_at.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "finished_at": finished_at.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "duration_ms": int((finished_at - started_at).total_seconds() * 1000),
        "aborted": aborted,
        "counts": counts,
        "failed_downloads": fetch_failed,
        "failed_uploads": upload_failed,
        "upload_error": upload_error,
        "error": error,
    }


def _write_lines(path: Path, values: Sequence[str]) -> None:
    path.write_text("".join(f"{value}\n" for value in values), encoding="utf-8")


def _write_run_artifacts(
    config: RehostConfig,
    run_id: str,
    run_dir: Path,
    started_at: datetime,
    stats: RunStats,
    written: Optional[Path],
) -> Dict[str, Any]:
    _write_lines(run_dir / FAILED_DOWNLOADS_NAME, stats.fetch_failed)
    _write_lines(run_dir / FAILED_UPLOADS_NAME, stats.upload_failed)
    finished_at = datetime.now(timezone.utc)
    summary = _build_summary(config, run_id, run_dir, started_at, finished_at, stats, written)
    (run_dir / SUMMARY_NAME).write_text(json.dumps(summary, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return summary


def run_rehost(
    config: RehostConfig,
    *,
    fetcher: Any = None,
    gallery: Any = None,
    soft_fail: bool = False,
    fetch_sleep: Optional[Callable[[float], Any]] = None,
    upload_sleep: Callable[[float], None] = time.sleep,
) -> Tuple[Dict[str, Any], int]:
    if config.input_path is None:
        raise ValueError("input_path is required")
    if not config.input_path.exists():
        raise FileNotFoundError(f"Input document not found: {config.input_path}")

    started_at = datetime.now(timezone.utc)
    run_dir, run_id = resolve_run_dir(config.artifacts_dir)
    try:
        run_dir.mkdir(parents=True, exist_ok=True)
    except Exception as exc:
        raise RuntimeError(f"Unable to create run dir {run_dir}: {exc}") from exc

    for warning in collect_environment_warnings():
        message = warning.get("message") or warning.get("code") or "environment warning"
        logger.warning("%s (%s)", message, warning.get("remedy", ""))

    output_path = config.output_path or default_output_path(config.input_path)
    soup = load_document(config.input_path)
    ledger = ResumeLedger(config.ledger_path)
    ledger.load()

    if fetcher is None:
        fetcher = OneDriveFetcher(
            headless=config.headless,
            user_data_dir=config.user_data_dir,
            navigation_timeout=config.navigation_timeout,
            settle_delay=config.settle_delay,
        )

    def gallery_factory() -> Any:
        return gallery if gallery is not None else ImgboxGallery(auth_cookie=config.auth_cookie)

    stats = RunStats()
    written: Optional[Path] = None
    try:
        rehost_document(
            soup,
            config,
            ledger=ledger,
            fetcher=fetcher,
            gallery_factory=gallery_factory,
            run_dir=run_dir,
            stats=stats,
            fetch_sleep=fetch_sleep,
            upload_sleep=upload_sleep,
        )
    except FailureBudgetExceeded as exc:
        logger.error("run aborted: %s", exc)
    except Exception as exc:
        stats.aborted = True
        stats.error = f"{type(exc).__name__}: {exc}"
        logger.error("run failed: %s", stats.error)
        raise
    else:
        write_document(soup, output_path)
        written = output_path
    finally:
        ledger.persist()
        summary = _write_run_artifacts(config, run_id, run_dir, started_at, stats, written)

    logger.info(
        "%d resources, %d placeholders patched, %d fetch failures, %d upload failures, %d mapping failures",
        stats.resources,
        stats.patched,
        len(stats.fetch_failed),
        len(stats.upload_failed),
        stats.mapping_failures,
    )

    exit_code = 0
    if stats.aborted or stats.upload_error:
        exit_code = 3
    elif stats.has_failures and not soft_fail:
        exit_code = 3
    return summary, exit_code
