"""Error kinds raised across the rehost workflow."""

from __future__ import annotations

from typing import List, Optional, Sequence


class RehostError(Exception):
    """Base class for rehoster errors."""


class FetchError(RehostError):
    """A single fetch attempt failed; retryable."""

    def __init__(self, locator: str, message: str) -> None:
        super().__init__(f"{message} ({locator})")
        self.locator = locator


class FetchTimeout(FetchError):
    """The fetch did not produce a file within its time box."""


class FetchNoFilename(FetchError):
    """The remote page offered no resolvable filename."""


class FetchTransport(FetchError):
    """Navigation, browser or network failure."""


class UploadBatchError(RehostError):
    """The gallery call for a whole batch failed."""

    def __init__(self, message: str, *, batch_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.batch_index = batch_index


class UploadItemRejected(RehostError):
    """The gallery rejected one item of an otherwise successful batch."""

    def __init__(self, display_name: str, reason: str) -> None:
        super().__init__(f"{display_name}: {reason}")
        self.display_name = display_name
        self.reason = reason


class MappingNotFound(RehostError):
    """An upload task could not be matched to any uploaded name."""

    def __init__(self, display_name: str, normalized: str) -> None:
        super().__init__(f"no upload matches {display_name!r} (normalized {normalized!r})")
        self.display_name = display_name
        self.normalized = normalized


class LedgerCorrupt(RehostError):
    """The durable ledger could not be parsed."""


class FailureBudgetExceeded(RehostError):
    """Too many resources exhausted their fetch retries in this run."""

    def __init__(self, failed: Sequence[str], ceiling: int) -> None:
        super().__init__(f"{len(failed)} fetch failures exceed ceiling {ceiling}")
        self.failed: List[str] = list(failed)
        self.ceiling = ceiling
