"""Shared record keys to avoid magic strings across rehoster modules."""

from __future__ import annotations

# Ledger record keys
K_LOCATOR = "locator"
K_LOCAL_FILENAME = "local_filename"
K_REMOTE_URL = "remote_url"
K_REMOTE_THUMBNAIL_URL = "remote_thumbnail_url"

# Upload / reconciliation keys
K_DISPLAY_NAME = "display_name"
K_URL = "url"
K_THUMBNAIL_URL = "thumbnail_url"
K_NORMALIZED_NAME = "normalized_name"
