"""Batch uploads of fetched files to the remote gallery."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.keys import K_DISPLAY_NAME, K_THUMBNAIL_URL, K_URL
from .errors import UploadBatchError
from .ledger import LedgerEntry, ResumeLedger
from .reconcile import normalize_name

logger = logging.getLogger(__name__)


@dataclass
class UploadItem:
    source: Path
    display_name: str
    locator: Optional[str] = None


@dataclass
class UploadedImage:
    display_name: str
    url: str
    thumbnail_url: str

    def to_dict(self) -> Dict[str, str]:
        return {K_DISPLAY_NAME: self.display_name, K_URL: self.url, K_THUMBNAIL_URL: self.thumbnail_url}


@dataclass
class UploadOptions:
    content_type: str = "safe"
    thumbnail_size: str = "800r"
    comments_enabled: bool = False


@dataclass
class UploadResponse:
    """What the gallery reports for one batch call."""

    succeeded: List[UploadedImage] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    raw: Any = None


@dataclass
class UploadReport:
    uploaded: Dict[str, UploadedImage] = field(default_factory=dict)
    failed: List[UploadItem] = field(default_factory=list)
    batches: int = 0
    error: Optional[UploadBatchError] = None


def chunked(items: Sequence[UploadItem], size: int) -> List[List[UploadItem]]:
    size = max(1, size)
    return [list(items[idx : idx + size]) for idx in range(0, len(items), size)]


class UploadBatcher:
    """Upload items in fixed-size batches, sequentially, pausing between calls.

    Items the gallery explicitly rejects are re-sent as their own reduced
    batch for up to ``retry_rounds`` extra rounds. A failing batch call is not
    retried here: it stops the stage and is returned on the report so the
    caller can persist what already succeeded.
    """

    def __init__(
        self,
        gallery: Any,
        *,
        ledger: Optional[ResumeLedger] = None,
        batch_size: int = 20,
        batch_delay: float = 2.0,
        retry_rounds: int = 1,
        options: Optional[UploadOptions] = None,
        dump_dir: Optional[Path] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gallery = gallery
        self.ledger = ledger
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.retry_rounds = max(0, retry_rounds)
        self.options = options or UploadOptions()
        self.dump_dir = dump_dir
        self._sleep = sleep
        self._calls = 0

    def upload(self, items: Sequence[UploadItem]) -> UploadReport:
        report = UploadReport()
        pending = list(items)
        total_rounds = 1 + self.retry_rounds
        for round_idx in range(total_rounds):
            if not pending:
                break
            if round_idx:
                logger.info("retry round %d/%d for %d rejected items", round_idx, self.retry_rounds, len(pending))
            rejected: List[UploadItem] = []
            batches = chunked(pending, self.batch_size)
            for batch_idx, batch in enumerate(batches, start=1):
                try:
                    rejected.extend(self._upload_batch(batch, batch_idx, round_idx, report))
                except UploadBatchError as exc:
                    logger.error("upload batch %d failed: %s", batch_idx, exc)
                    exc.batch_index = batch_idx
                    report.error = exc
                    report.failed = rejected + [item for rest in batches[batch_idx - 1 :] for item in rest]
                    return report
            pending = rejected
        report.failed = pending
        for item in pending:
            logger.warning("upload rejected after %d rounds: %s (%s)", total_rounds, item.display_name, item.locator)
        return report

    def _upload_batch(
        self,
        batch: List[UploadItem],
        batch_idx: int,
        round_idx: int,
        report: UploadReport,
    ) -> List[UploadItem]:
        if self._calls and self.batch_delay > 0:
            self._sleep(self.batch_delay)
        self._calls += 1
        report.batches += 1
        logger.info("uploading batch %d (%d files)", batch_idx, len(batch))
        response = self.gallery.upload(batch, self.options)
        self._dump(response, batch_idx, round_idx)

        by_name: Dict[str, List[UploadItem]] = {}
        for item in batch:
            by_name.setdefault(normalize_name(item.display_name), []).append(item)
        returned: Dict[str, List[UploadedImage]] = {}
        for image in response.succeeded:
            report.uploaded[image.display_name] = image
            returned.setdefault(normalize_name(image.display_name), []).append(image)

        # Anything not reported as succeeded counts as rejected, listed or not.
        reported = {normalize_name(name) for name in response.failed}
        rejected: List[UploadItem] = []
        for name, items in by_name.items():
            images = returned.get(name, [])
            if len(items) == 1 and len(images) == 1:
                self._merge_into_ledger(items[0], images[0])
            elif images:
                # Uploaded, but the gallery name cannot tell these files apart.
                for item in items:
                    logger.warning(
                        "ambiguous gallery name %r for %s (%s); not recorded",
                        name,
                        item.display_name,
                        item.locator,
                    )
            else:
                reason = "rejected" if name in reported else "missing from response"
                for item in items:
                    logger.warning("gallery %s %s (%s)", reason, item.display_name, item.locator)
                rejected.extend(items)
        if self.ledger is not None:
            self.ledger.persist()
        return rejected

    def _merge_into_ledger(self, item: UploadItem, image: UploadedImage) -> None:
        if self.ledger is None or item.locator is None:
            return
        if not (image.url and image.thumbnail_url):
            return
        entry = self.ledger.get(item.locator) or LedgerEntry(local_filename=item.source.name)
        entry.remote_url = image.url
        entry.remote_thumbnail_url = image.thumbnail_url
        self.ledger.set(item.locator, entry)

    def _dump(self, response: UploadResponse, batch_idx: int, round_idx: int) -> None:
        if self.dump_dir is None:
            return
        self.dump_dir.mkdir(parents=True, exist_ok=True)
        suffix = f"_retry{round_idx}" if round_idx else ""
        path = self.dump_dir / f"upload_batch_{batch_idx:03d}{suffix}.json"
        payload = {
            "succeeded": [image.to_dict() for image in response.succeeded],
            "failed": list(response.failed),
            "raw": response.raw,
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n", encoding="utf-8")


__all__ = [
    "UploadBatcher",
    "UploadItem",
    "UploadOptions",
    "UploadReport",
    "UploadResponse",
    "UploadedImage",
    "chunked",
]
