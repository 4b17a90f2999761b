"""Shared helper functions used by the rehost workflow."""

from __future__ import annotations

import os
from typing import Dict, Iterable, List
from urllib.parse import urlparse


def _env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float = 0.0) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def strip_query(address: str) -> str:
    """Return ``address`` without its query string or fragment."""

    raw = (address or "").strip()
    for sep in ("?", "#"):
        idx = raw.find(sep)
        if idx != -1:
            raw = raw[:idx]
    return raw


def matches_prefix(address: str, prefixes: Iterable[str]) -> bool:
    """Return True when the address starts with any accepted locator prefix."""

    value = (address or "").strip()
    if not value:
        return False
    return any(value.startswith(prefix) for prefix in prefixes if prefix)


def is_rehosted(address: str, host_suffixes: Iterable[str]) -> bool:
    """Return True when the address is already served by the gallery host."""

    try:
        host = (urlparse((address or "").strip()).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    for suffix in host_suffixes:
        token = (suffix or "").strip().lower().lstrip(".")
        if not token:
            continue
        if host == token or host.endswith(f".{token}"):
            return True
    return False


def collect_environment_warnings() -> List[Dict[str, str]]:
    """Describe missing optional capabilities without failing the run."""

    warnings: List[Dict[str, str]] = []
    from . import onedrive

    if getattr(onedrive, "async_playwright", None) is None:
        warnings.append(
            {
                "code": "playwright_missing",
                "message": "Playwright is not importable; remote files cannot be fetched",
                "remedy": "pip install playwright && playwright install chromium",
            }
        )
    if not os.getenv("IMGBOX_COOKIE"):
        warnings.append(
            {
                "code": "imgbox_cookie_missing",
                "message": "IMGBOX_COOKIE not set; uploads will be anonymous",
                "remedy": "Set IMGBOX_COOKIE to attach uploads to your imgbox account.",
            }
        )
    return warnings


__all__ = [
    "strip_query",
    "matches_prefix",
    "is_rehosted",
    "collect_environment_warnings",
]
