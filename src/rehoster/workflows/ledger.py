"""Durable resume ledger: locator -> known local/remote progress."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.keys import K_LOCAL_FILENAME, K_LOCATOR, K_REMOTE_THUMBNAIL_URL, K_REMOTE_URL
from .errors import LedgerCorrupt

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry:
    """Progress known for one resource; ``None`` means not yet reached."""

    local_filename: Optional[str] = None
    remote_url: Optional[str] = None
    remote_thumbnail_url: Optional[str] = None

    @property
    def is_reconciled(self) -> bool:
        return bool(self.remote_url and self.remote_thumbnail_url)

    def to_record(self, locator: str) -> Dict[str, Any]:
        record: Dict[str, Any] = {K_LOCATOR: locator}
        if self.local_filename:
            record[K_LOCAL_FILENAME] = self.local_filename
        if self.remote_url:
            record[K_REMOTE_URL] = self.remote_url
        if self.remote_thumbnail_url:
            record[K_REMOTE_THUMBNAIL_URL] = self.remote_thumbnail_url
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "LedgerEntry":
        return cls(
            local_filename=record.get(K_LOCAL_FILENAME) or None,
            remote_url=record.get(K_REMOTE_URL) or None,
            remote_thumbnail_url=record.get(K_REMOTE_THUMBNAIL_URL) or None,
        )


def parse_records(payload: Any) -> Dict[str, LedgerEntry]:
    if not isinstance(payload, list):
        raise LedgerCorrupt("ledger must be a list of records")
    entries: Dict[str, LedgerEntry] = {}
    for idx, record in enumerate(payload):
        if not isinstance(record, dict):
            raise LedgerCorrupt(f"record {idx} is not an object")
        locator = record.get(K_LOCATOR)
        if not isinstance(locator, str) or not locator:
            raise LedgerCorrupt(f"record {idx} has no locator")
        entries[locator] = LedgerEntry.from_record(record)
    return entries


class ResumeLedger:
    """Ordered locator -> :class:`LedgerEntry` table persisted as a JSON list."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._entries: Dict[str, LedgerEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, locator: object) -> bool:
        return locator in self._entries

    @property
    def entries(self) -> Dict[str, LedgerEntry]:
        return self._entries

    def load(self) -> Dict[str, LedgerEntry]:
        if not self.path.exists():
            logger.warning("ledger %s not found; starting empty", self.path)
            self._entries = {}
            return self._entries
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            self._entries = parse_records(payload)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, LedgerCorrupt) as exc:
            logger.warning("ledger %s unreadable (%s); starting empty", self.path, exc)
            self._entries = {}
        else:
            logger.info("loaded %d ledger entries from %s", len(self._entries), self.path)
        return self._entries

    def get(self, locator: str) -> Optional[LedgerEntry]:
        return self._entries.get(locator)

    def set(self, locator: str, entry: LedgerEntry) -> None:
        self._entries[locator] = entry

    def to_records(self) -> List[Dict[str, Any]]:
        return [entry.to_record(locator) for locator, entry in self._entries.items()]

    def persist(self) -> None:
        """Rewrite the whole ledger through a temp file and an atomic rename."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.to_records(), ensure_ascii=False, indent=2) + "\n"
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("persisted %d ledger entries to %s", len(self._entries), self.path)


__all__ = ["LedgerEntry", "ResumeLedger", "parse_records"]
