"""Resolve each remote resource to a cached upload or a local file.

Resources are handled one at a time in discovery order. A resource whose
ledger entry already carries remote URLs never reaches the fetcher; one whose
local file is still on disk skips straight to upload; everything else is
fetched with bounded retries. The ledger is flushed after every fetch outcome
so a killed process loses at most the resource in flight.

The fetcher is any object exposing::

    async def fetch(locator: str, target_dir: Path, timeout: float) -> Path

that raises :class:`~rehoster.workflows.errors.FetchError` subclasses on
failure (see :class:`~rehoster.workflows.onedrive.OneDriveFetcher`).
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .errors import FailureBudgetExceeded, FetchError, FetchTimeout
from .ledger import LedgerEntry, ResumeLedger
from .links import ResourceLink
from .naming import place

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class ResourceState(str, Enum):
    UNRESOLVED = "unresolved"
    FETCHING = "fetching"
    DONE_CACHED = "done_cached"
    DONE_LOCAL = "done_local"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 30.0
    # Outer guard around a whole attempt, for fetchers that ignore ``timeout``.
    attempt_deadline: Optional[float] = None

    @property
    def attempts(self) -> int:
        return 1 + max(0, self.max_retries)


@dataclass
class FailureCounter:
    ceiling: int
    failed: List[str] = field(default_factory=list)

    def record(self, locator: str) -> None:
        self.failed.append(locator)

    @property
    def exceeded(self) -> bool:
        return len(self.failed) > self.ceiling


@dataclass
class ResolvedResource:
    link: ResourceLink
    state: ResourceState
    entry: Optional[LedgerEntry] = None
    local_path: Optional[Path] = None
    fetched: bool = False


@dataclass
class FetchOutcome:
    cached: List[ResolvedResource] = field(default_factory=list)
    local: List[ResolvedResource] = field(default_factory=list)
    failed: List[ResolvedResource] = field(default_factory=list)


class FetchOrchestrator:
    def __init__(
        self,
        fetcher: Any,
        ledger: ResumeLedger,
        download_dir: Path,
        *,
        policy: Optional[RetryPolicy] = None,
        failure_ceiling: int = 5,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.ledger = ledger
        self.download_dir = Path(download_dir)
        self.policy = policy or RetryPolicy()
        self.failures = FailureCounter(ceiling=failure_ceiling)
        self.fetch_attempts = 0
        self._sleep = sleep

    def classify(self, link: ResourceLink) -> ResolvedResource:
        """Decide from the ledger alone whether ``link`` still needs fetching."""

        entry = self.ledger.get(link.locator)
        if entry is not None:
            if entry.is_reconciled:
                return ResolvedResource(link, ResourceState.DONE_CACHED, entry=entry)
            if entry.local_filename:
                local_path = self.download_dir / entry.local_filename
                if local_path.is_file():
                    return ResolvedResource(link, ResourceState.DONE_LOCAL, entry=entry, local_path=local_path)
                logger.info("ledger file %s missing for %s; refetching", local_path, link.locator)
        return ResolvedResource(link, ResourceState.UNRESOLVED, entry=entry)

    async def resolve(self, link: ResourceLink) -> ResolvedResource:
        resolved = self.classify(link)
        if resolved.state is not ResourceState.UNRESOLVED:
            logger.debug("%s: %s from ledger", link.locator, resolved.state.value)
            return resolved

        resolved.state = ResourceState.FETCHING
        resolved.fetched = True
        local_path = await self._fetch_with_retries(link.locator)
        if local_path is None:
            resolved.state = ResourceState.FAILED
            self.failures.record(link.locator)
            return resolved

        entry = LedgerEntry(local_filename=local_path.name)
        self.ledger.set(link.locator, entry)
        resolved.state = ResourceState.DONE_LOCAL
        resolved.entry = entry
        resolved.local_path = local_path
        return resolved

    async def resolve_all(self, links: Sequence[ResourceLink]) -> FetchOutcome:
        outcome = FetchOutcome()
        self.download_dir.mkdir(parents=True, exist_ok=True)
        for idx, link in enumerate(links, start=1):
            logger.info("[%d/%d] resolving %s (%d placeholders)", idx, len(links), link.locator, len(link.placeholders))
            resolved = await self.resolve(link)
            if resolved.state is ResourceState.DONE_CACHED:
                outcome.cached.append(resolved)
            elif resolved.state is ResourceState.DONE_LOCAL:
                outcome.local.append(resolved)
            else:
                outcome.failed.append(resolved)
            if resolved.fetched:
                self.ledger.persist()
            if self.failures.exceeded:
                self.ledger.persist()
                logger.error(
                    "fetch failure budget exceeded (%d > %d); stopping",
                    len(self.failures.failed),
                    self.failures.ceiling,
                )
                raise FailureBudgetExceeded(self.failures.failed, self.failures.ceiling)
        return outcome

    async def _fetch_with_retries(self, locator: str) -> Optional[Path]:
        attempts = self.policy.attempts
        for attempt in range(1, attempts + 1):
            self.fetch_attempts += 1
            error: FetchError
            with tempfile.TemporaryDirectory(prefix=".incoming-", dir=self.download_dir) as scratch:
                try:
                    pending = self.fetcher.fetch(locator, Path(scratch), self.policy.timeout)
                    if self.policy.attempt_deadline is not None:
                        scratch_path = await asyncio.wait_for(pending, self.policy.attempt_deadline)
                    else:
                        scratch_path = await pending
                    return place(Path(scratch_path), self.download_dir)
                except asyncio.TimeoutError:
                    error = FetchTimeout(locator, f"attempt exceeded {self.policy.attempt_deadline}s")
                except FetchError as exc:
                    error = exc
            logger.warning(
                "fetch attempt %d/%d failed for %s: %s: %s",
                attempt,
                attempts,
                locator,
                type(error).__name__,
                error,
            )
            if attempt < attempts:
                await self._sleep(self.policy.retry_delay)
        logger.error("all %d attempts failed for %s", attempts, locator)
        return None


__all__ = [
    "FailureCounter",
    "FetchOrchestrator",
    "FetchOutcome",
    "ResolvedResource",
    "ResourceState",
    "RetryPolicy",
]
