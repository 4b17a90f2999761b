"""Backup-then-replace rewriting of image placeholders."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from bs4 import BeautifulSoup, Comment, Tag  # type: ignore

from .links import enclosing_link
from .rehost_config import BACKUP_COMMENT_TAG

logger = logging.getLogger(__name__)


def build_backup_comment(src: str, href: Optional[str] = None) -> Comment:
    # One "key: value" per line; URLs never contain newlines or "-->".
    lines = [BACKUP_COMMENT_TAG, f"src: {src}"]
    if href is not None:
        lines.append(f"href: {href}")
    return Comment(" " + "\n".join(lines) + " ")


def parse_backup_comment(text: str) -> Optional[Dict[str, str]]:
    """Recover the original addresses from a backup comment, or ``None``."""

    body = text or ""
    if body.startswith(" ") and body.endswith(" "):
        body = body[1:-1]
    lines = body.split("\n")
    if not lines or lines[0] != BACKUP_COMMENT_TAG:
        return None
    values: Dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(": ")
        if sep:
            values[key] = value
    return values


def patch_placeholder(img: Tag, url: str, thumbnail_url: str, *, rewrite_links: bool = False) -> bool:
    """Shadow the original ``src`` (and link) in a comment, then point at the gallery.

    Returns False when the placeholder has no ``src`` to back up.
    """

    src = img.get("src")
    if src is None:
        return False
    anchor = enclosing_link(img) if rewrite_links else None
    href = anchor.get("href") if anchor is not None else None
    img.insert_before(build_backup_comment(src, href))
    img["src"] = thumbnail_url
    if anchor is not None:
        anchor["href"] = url
    return True


def load_document(path: Path) -> BeautifulSoup:
    return BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")


def write_document(soup: BeautifulSoup, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(soup), encoding="utf-8")
    logger.info("wrote %s", path)


__all__ = [
    "build_backup_comment",
    "load_document",
    "parse_backup_comment",
    "patch_placeholder",
    "write_document",
]
