from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .rehost_config import IMGBOX_COOKIE_ENV, RehostConfig
from .rehost_utils import collect_environment_warnings


_SECRET_TOKENS = ("key", "token", "secret", "password", "pass", "cookie")


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_env_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _check_playwright_available() -> bool:
    from . import onedrive

    return getattr(onedrive, "async_playwright", None) is not None


def _check_writable(path: Path) -> bool:
    """True when ``path`` (or its nearest existing ancestor) is writable."""

    existing = path
    while not existing.exists():
        if existing.parent == existing:
            return False
        existing = existing.parent
    return os.access(existing, os.W_OK)


def _path_status(path: Path) -> str:
    if path.exists():
        return "ok" if os.access(path, os.W_OK) else "read-only"
    return "will be created" if _check_writable(path) else "not writable"


def build_doctor_report(config: Optional[RehostConfig] = None) -> Dict[str, Any]:
    config = config or RehostConfig.from_env()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "settings": {
            "locator_prefixes": list(config.locator_prefixes),
            "max_retries": config.max_retries,
            "failure_ceiling": config.failure_ceiling,
            "batch_size": config.batch_size,
            "batch_delay": config.batch_delay,
            "upload_retries": config.upload_retries,
            "attempt_deadline": config.attempt_deadline,
            "headless": config.headless,
        },
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        kind: str = "capability",
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
        path: Optional[Path] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "name": name,
            "kind": kind,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if path is not None:
            entry["path"] = str(path.expanduser().resolve())
            entry["status"] = _path_status(path) if status else "not writable"
        if remedy and not status:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_env_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    playwright_ok = _check_playwright_available()
    add_check(
        "playwright",
        playwright_ok,
        detail="OneDrive downloads enabled" if playwright_ok else "OneDrive downloads disabled",
        remedy="pip install playwright && playwright install chromium",
    )

    cookie = os.getenv(IMGBOX_COOKIE_ENV)
    add_check(
        IMGBOX_COOKIE_ENV,
        bool(cookie),
        detail="uploads attached to your imgbox account" if cookie else "uploads will be anonymous",
        remedy="Set IMGBOX_COOKIE to your imgbox session cookie.",
        level="info",
        value=cookie,
    )

    add_check(
        "REHOST_DOWNLOAD_DIR",
        _check_writable(config.download_dir),
        kind="path",
        detail="shared download directory",
        remedy="Create the directory or point REHOST_DOWNLOAD_DIR somewhere writable.",
        path=config.download_dir,
    )
    add_check(
        "REHOST_LEDGER_PATH",
        _check_writable(config.ledger_path),
        kind="path",
        detail="resume ledger",
        remedy="Point REHOST_LEDGER_PATH somewhere writable.",
        path=config.ledger_path,
    )
    if config.user_data_dir is not None:
        add_check(
            "REHOST_USER_DATA_DIR",
            config.user_data_dir.exists(),
            kind="path",
            detail="browser profile",
            remedy="Run once with --headed to log in; the profile is created on first launch.",
            level="info",
            path=config.user_data_dir,
        )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = [
        f"rehoster doctor ({report.get('generated_at')})",
        f"overall: {'ready' if report.get('ok', True) else 'needs attention'}",
    ]
    checks = report.get("checks", [])
    for kind, heading in (("capability", "Capabilities"), ("path", "Paths")):
        group = [check for check in checks if check.get("kind", "capability") == kind]
        if not group:
            continue
        lines.append("")
        lines.append(f"{heading}:")
        for check in group:
            marker = "+" if check.get("status") in ("ok", "will be created") else "!"
            if kind == "path":
                lines.append(f"  {marker} {check.get('detail')}: {check.get('status')}")
                lines.append(f"      {check.get('path')} ({check.get('name')})")
            else:
                label = f"{check.get('name')}: {check.get('status')}"
                if check.get("value"):
                    label = f"{label} [{check['value']}]"
                lines.append(f"  {marker} {label} ({check.get('detail')})")
            if check.get("remedy"):
                lines.append(f"      fix: {check['remedy']}")
    settings = report.get("settings") or {}
    if settings:
        lines.append("")
        lines.append("Run settings:")
        for key, value in settings.items():
            lines.append(f"  {key}: {value}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            lines.append(f"  {warning.get('code', 'warning')}: {warning.get('message', '')}")
    return "\n".join(lines) + "\n"
