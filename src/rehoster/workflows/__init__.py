"""High-level exports for the rehost workflows."""

from .fetch_orchestrator import FetchOrchestrator, RetryPolicy
from .imgbox import ImgboxGallery
from .ledger import LedgerEntry, ResumeLedger
from .links import ResourceLink, extract_resource_links
from .naming import place
from .onedrive import OneDriveFetcher
from .patcher import parse_backup_comment, patch_placeholder
from .reconcile import normalize_name, reconcile
from .rehost_config import RehostConfig
from .upload import UploadBatcher

__all__ = [
    "FetchOrchestrator",
    "ImgboxGallery",
    "LedgerEntry",
    "OneDriveFetcher",
    "RehostConfig",
    "ResourceLink",
    "ResumeLedger",
    "RetryPolicy",
    "UploadBatcher",
    "extract_resource_links",
    "normalize_name",
    "parse_backup_comment",
    "patch_placeholder",
    "place",
    "reconcile",
]
