"""Rehoster defaults (locator families, gallery hosts, paths, pacing).

Centralizes static defaults so the workflow modules have no embedded magic
strings. ``RehostConfig`` is the run-level configuration built from these
defaults, optionally overridden by ``REHOST_*`` environment variables and then
by CLI flags.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from .rehost_utils import _env_bool, _env_float, _env_int

# Remote locator families (prefix match against the enclosing link address)
ONEDRIVE_FILE_PREFIX = "https://1drv.ms/u/s!"
ONEDRIVE_PHOTO_PREFIX = "https://1drv.ms/i/"
LOCATOR_PREFIXES: Tuple[str, ...] = (ONEDRIVE_FILE_PREFIX, ONEDRIVE_PHOTO_PREFIX)

# Hosts that already serve rehosted images; placeholders there are skipped
REHOSTED_HOST_SUFFIXES: Tuple[str, ...] = ("imgbox.com",)

# Gallery endpoints
IMGBOX_ROOT = "https://imgbox.com"
IMGBOX_TOKEN_PATH = "/ajax/token/generate"
IMGBOX_UPLOAD_PATH = "/upload/process"
IMGBOX_COOKIE_ENV = "IMGBOX_COOKIE"

# Paths (working-directory relative)
DEFAULT_DOWNLOAD_DIR = Path("run") / "downloads"
DEFAULT_LEDGER_PATH = Path("run") / "rehost_ledger.json"
DEFAULT_ARTIFACTS_ROOT = Path("run") / "artifacts"

# Artifact names
FAILED_DOWNLOADS_NAME = "failed_downloads.txt"
FAILED_UPLOADS_NAME = "failed_uploads.txt"
UPLOADED_NAMES_NAME = "uploaded_names.json"
SUMMARY_NAME = "rehost_summary.json"

BACKUP_COMMENT_TAG = "rehost-backup"


@dataclass
class RehostConfig:
    """Settings for a single rehosting run."""

    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    download_dir: Path = DEFAULT_DOWNLOAD_DIR
    ledger_path: Path = DEFAULT_LEDGER_PATH
    artifacts_dir: Optional[Path] = None
    rewrite_links: bool = False
    locator_prefixes: Tuple[str, ...] = LOCATOR_PREFIXES
    rehosted_host_suffixes: Tuple[str, ...] = REHOSTED_HOST_SUFFIXES

    # Fetch stage
    max_retries: int = 3
    retry_delay: float = 1.0
    fetch_timeout: float = 30.0
    attempt_deadline: Optional[float] = None
    navigation_timeout: float = 30.0
    settle_delay: float = 3.0
    failure_ceiling: int = 5
    headless: bool = True
    user_data_dir: Optional[Path] = None

    # Upload stage
    batch_size: int = 20
    batch_delay: float = 2.0
    upload_retries: int = 1
    content_type: str = "safe"
    thumbnail_size: str = "800r"
    comments_enabled: bool = False
    auth_cookie: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "RehostConfig":
        config = cls()
        config.max_retries = max(0, _env_int("REHOST_MAX_RETRIES", config.max_retries))
        config.retry_delay = max(0.0, _env_float("REHOST_RETRY_DELAY", config.retry_delay))
        config.fetch_timeout = max(1.0, _env_float("REHOST_FETCH_TIMEOUT", config.fetch_timeout))
        config.navigation_timeout = max(1.0, _env_float("REHOST_NAVIGATION_TIMEOUT", config.navigation_timeout))
        deadline = _env_float("REHOST_ATTEMPT_DEADLINE", 0.0)
        config.attempt_deadline = deadline if deadline > 0 else None
        config.failure_ceiling = max(0, _env_int("REHOST_FAILURE_CEILING", config.failure_ceiling))
        config.batch_size = max(1, _env_int("REHOST_BATCH_SIZE", config.batch_size))
        config.batch_delay = max(0.0, _env_float("REHOST_BATCH_DELAY", config.batch_delay))
        config.upload_retries = max(0, _env_int("REHOST_UPLOAD_RETRIES", config.upload_retries))
        config.headless = _env_bool("REHOST_HEADLESS", "1")
        config.rewrite_links = _env_bool("REHOST_REWRITE_LINKS", "0")
        thumb = os.getenv("REHOST_THUMBNAIL_SIZE", "").strip()
        if thumb:
            config.thumbnail_size = thumb
        download_dir = os.getenv("REHOST_DOWNLOAD_DIR", "").strip()
        if download_dir:
            config.download_dir = Path(download_dir).expanduser()
        ledger_path = os.getenv("REHOST_LEDGER_PATH", "").strip()
        if ledger_path:
            config.ledger_path = Path(ledger_path).expanduser()
        user_data_dir = os.getenv("REHOST_USER_DATA_DIR", "").strip()
        if user_data_dir:
            config.user_data_dir = Path(user_data_dir).expanduser()
        config.auth_cookie = os.getenv(IMGBOX_COOKIE_ENV) or None
        return config
