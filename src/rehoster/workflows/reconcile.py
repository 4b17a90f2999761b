"""Match uploaded gallery names back to the tasks (and placeholders) that produced them."""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence, Tuple

from bs4 import Tag  # type: ignore

from ..core.keys import K_NORMALIZED_NAME
from .errors import MappingNotFound

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .upload import UploadedImage

logger = logging.getLogger(__name__)

_GALLERY_SUBSTITUTIONS = re.compile(r"[\s()+]")


def normalize_name(name: str) -> str:
    """Fold a filename the way the gallery does: lower-case, ``( ) +`` and whitespace to ``_``."""

    return _GALLERY_SUBSTITUTIONS.sub("_", (name or "").lower())


@dataclass
class UploadTask:
    """One local file and every placeholder waiting for its remote URL."""

    locator: str
    local_path: Path
    display_name: str
    placeholders: List[Tag] = field(default_factory=list)


@dataclass
class ReconcileReport:
    matched: List[Tuple[UploadTask, "UploadedImage"]] = field(default_factory=list)
    unmatched: List[MappingNotFound] = field(default_factory=list)

    @property
    def mapping_failures(self) -> int:
        return len(self.unmatched)


def reconcile(
    tasks: Sequence[UploadTask],
    uploaded: Mapping[str, "UploadedImage"],
    *,
    dump_path: Optional[Path] = None,
) -> ReconcileReport:
    """Pair each task with the one uploaded image whose folded name matches.

    A folded name claimed by more than one task, or reported for more than one
    image, is ambiguous: those tasks are counted as mapping failures rather
    than matched to a guess.
    """

    table: Dict[str, List["UploadedImage"]] = {}
    for raw_name, image in uploaded.items():
        table.setdefault(normalize_name(raw_name), []).append(image)
    claims = Counter(normalize_name(task.display_name) for task in tasks)

    report = ReconcileReport()
    for task in tasks:
        normalized = normalize_name(task.display_name)
        candidates = table.get(normalized, [])
        if len(candidates) == 1 and claims[normalized] == 1:
            report.matched.append((task, candidates[0]))
            continue
        if candidates:
            logger.warning(
                "ambiguous uploaded name for %r (normalized %r shared by %d files and %d images, locator %s)",
                task.display_name,
                normalized,
                claims[normalized],
                len(candidates),
                task.locator,
            )
        else:
            logger.warning(
                "no uploaded image for %r (normalized %r, locator %s)",
                task.display_name,
                normalized,
                task.locator,
            )
        report.unmatched.append(MappingNotFound(task.display_name, normalized))

    if report.unmatched:
        dump_uploaded_names(uploaded, dump_path)
    return report


def dump_uploaded_names(uploaded: Mapping[str, "UploadedImage"], path: Optional[Path] = None) -> None:
    rows = [
        {**image.to_dict(), K_NORMALIZED_NAME: normalize_name(name)}
        for name, image in uploaded.items()
    ]
    payload = json.dumps(rows, ensure_ascii=False, indent=2)
    logger.warning("uploaded-name table (%d entries):\n%s", len(rows), payload)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload + "\n", encoding="utf-8")


__all__ = ["ReconcileReport", "UploadTask", "dump_uploaded_names", "normalize_name", "reconcile"]
