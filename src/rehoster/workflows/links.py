"""Discover remote image resources and group the placeholders they back."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, Tag  # type: ignore

from .rehost_config import LOCATOR_PREFIXES, REHOSTED_HOST_SUFFIXES
from .rehost_utils import is_rehosted, matches_prefix, strip_query

logger = logging.getLogger(__name__)


@dataclass
class ResourceLink:
    """One remote resource and every ``<img>`` rendered from it, in document order."""

    locator: str
    placeholders: List[Tag] = field(default_factory=list)


def enclosing_link(img: Tag) -> Optional[Tag]:
    return img.find_parent("a")


def _accepted_href(anchor: Optional[Tag], prefixes: Iterable[str]) -> Optional[str]:
    if anchor is None:
        return None
    href = (anchor.get("href") or "").strip()
    if matches_prefix(href, prefixes):
        return href
    return None


def build_address_map(soup: BeautifulSoup, prefixes: Iterable[str] = LOCATOR_PREFIXES) -> Dict[str, str]:
    """Map each linked image's query-stripped ``src`` to its enclosing locator.

    The first link seen for an address wins, so later duplicates resolve to
    the same resource.
    """

    prefixes = tuple(prefixes)
    mapping: Dict[str, str] = {}
    for anchor in soup.find_all("a"):
        href = _accepted_href(anchor, prefixes)
        if not href:
            continue
        for img in anchor.find_all("img"):
            src = strip_query(img.get("src") or "")
            if src:
                mapping.setdefault(src, href)
    return mapping


def extract_resource_links(
    soup: BeautifulSoup,
    *,
    prefixes: Iterable[str] = LOCATOR_PREFIXES,
    rehosted_suffixes: Iterable[str] = REHOSTED_HOST_SUFFIXES,
) -> List[ResourceLink]:
    prefixes = tuple(prefixes)
    rehosted_suffixes = tuple(rehosted_suffixes)
    address_map = build_address_map(soup, prefixes)

    groups: Dict[str, ResourceLink] = {}
    skipped_rehosted = 0
    unresolved = 0
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src:
            continue
        if is_rehosted(src, rehosted_suffixes):
            skipped_rehosted += 1
            continue
        locator = _accepted_href(enclosing_link(img), prefixes)
        if locator is None:
            locator = address_map.get(strip_query(src))
        if locator is None:
            unresolved += 1
            continue
        group = groups.get(locator)
        if group is None:
            group = groups[locator] = ResourceLink(locator=locator)
        group.placeholders.append(img)

    links = list(groups.values())
    logger.info(
        "found %d remote resources for %d placeholders (%d already rehosted, %d unresolved)",
        len(links),
        sum(len(link.placeholders) for link in links),
        skipped_rehosted,
        unresolved,
    )
    return links


__all__ = ["ResourceLink", "build_address_map", "enclosing_link", "extract_resource_links"]
