"""Collision-free placement of fetched files into the shared download directory.

Two names collide when they are equal or when the gallery would fold them to
the same name (``My Photo.jpg`` and ``my_photo.jpg``); uploads are matched
back by folded name, so the directory never holds two files that fold alike.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Set

from .reconcile import normalize_name

logger = logging.getLogger(__name__)


def _folded_names(target_dir: Path) -> Set[str]:
    if not target_dir.is_dir():
        return set()
    return {normalize_name(entry.name) for entry in target_dir.iterdir() if entry.is_file()}


def next_free_path(target_dir: Path, filename: str) -> Path:
    """Return ``target_dir/filename`` or the first free ``stem_N.ext`` variant."""

    taken = _folded_names(target_dir)

    def _free(candidate: Path) -> bool:
        return not candidate.exists() and normalize_name(candidate.name) not in taken

    candidate = target_dir / filename
    if _free(candidate):
        return candidate
    name = Path(filename)
    stem, suffix = name.stem, name.suffix
    counter = 1
    while True:
        candidate = target_dir / f"{stem}_{counter}{suffix}"
        if _free(candidate):
            return candidate
        counter += 1


def place(scratch_path: Path, target_dir: Path) -> Path:
    """Move a freshly fetched file out of scratch under a name nobody else holds."""

    scratch_path = Path(scratch_path)
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    final_path = next_free_path(target_dir, scratch_path.name)
    shutil.move(str(scratch_path), str(final_path))
    if final_path.name != scratch_path.name:
        logger.info("renamed %s -> %s to avoid a collision", scratch_path.name, final_path.name)
    return final_path


__all__ = ["next_free_path", "place"]
