from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple

from .errors import FetchNoFilename, FetchTimeout, FetchTransport
from .rehost_config import ONEDRIVE_FILE_PREFIX, ONEDRIVE_PHOTO_PREFIX

logger = logging.getLogger(__name__)


class _PlaywrightUnavailable(Exception):
    pass


try:  # Playwright is optional at import time; fetching requires it
    from playwright.async_api import Error as PlaywrightError  # type: ignore
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError  # type: ignore
    from playwright.async_api import async_playwright  # type: ignore
except Exception:  # pragma: no cover - handled at runtime
    async_playwright = None  # type: ignore
    PlaywrightError = _PlaywrightUnavailable  # type: ignore
    PlaywrightTimeoutError = _PlaywrightUnavailable  # type: ignore

VIEWPORT = {"width": 1920, "height": 1080}
FILENAME_LOOKUP_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class LocatorFamily:
    """How to find the filename and the download control for one address family."""

    prefix: str
    download_selector: str
    filename_source: str  # "button_title" or "page_title"


LOCATOR_FAMILIES: Tuple[LocatorFamily, ...] = (
    LocatorFamily(ONEDRIVE_FILE_PREFIX, 'button[data-automationid="download"]', "button_title"),
    LocatorFamily(ONEDRIVE_PHOTO_PREFIX, "#__photo-view-download", "page_title"),
)


def family_for(locator: str) -> Optional[LocatorFamily]:
    for family in LOCATOR_FAMILIES:
        if locator.startswith(family.prefix):
            return family
    return None


def filename_from_title(title: str) -> str:
    """OneDrive photo pages are titled ``<file name> - OneDrive``."""

    return (title or "").split(" - ")[0].strip()


class OneDriveFetcher:
    """Download OneDrive share links by driving a real browser session.

    One browser (or persistent profile, when ``user_data_dir`` is given so a
    logged-in session can be reused) lives for the whole run; every attempt
    gets its own page, which is always closed.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        user_data_dir: Optional[Path] = None,
        navigation_timeout: float = 30.0,
        settle_delay: float = 3.0,
    ) -> None:
        self.headless = headless
        self.user_data_dir = user_data_dir
        self.navigation_timeout = navigation_timeout
        self.settle_delay = settle_delay
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    async def __aenter__(self) -> "OneDriveFetcher":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        if self._context is not None:
            return
        if async_playwright is None:
            raise RuntimeError("Playwright is not installed; run `pip install playwright && playwright install chromium`")
        self._playwright = await async_playwright().start()
        chromium = self._playwright.chromium
        if self.user_data_dir is not None:
            self.user_data_dir.mkdir(parents=True, exist_ok=True)
            self._context = await chromium.launch_persistent_context(
                str(self.user_data_dir),
                headless=self.headless,
                accept_downloads=True,
                viewport=VIEWPORT,
            )
        else:
            self._browser = await chromium.launch(headless=self.headless)
            self._context = await self._browser.new_context(accept_downloads=True, viewport=VIEWPORT)
        logger.info("browser started (headless=%s, profile=%s)", self.headless, self.user_data_dir)

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("browser closed")

    async def _discard(self) -> None:
        """Drop a browser that failed so the next attempt launches a fresh one."""

        try:
            await self.close()
        except PlaywrightError as exc:
            logger.debug("ignoring error while discarding browser: %s", exc)
        finally:
            self._context = None
            self._browser = None
            self._playwright = None

    async def _open_page(self, locator: str) -> Any:
        try:
            await self.start()
            return await self._context.new_page()
        except PlaywrightError as exc:
            await self._discard()
            raise FetchTransport(locator, f"browser unavailable: {exc}") from exc

    async def fetch(self, locator: str, target_dir: Path, timeout: float) -> Path:
        family = family_for(locator)
        if family is None:
            raise FetchTransport(locator, "unsupported locator family")
        target_dir.mkdir(parents=True, exist_ok=True)
        page = await self._open_page(locator)
        try:
            try:
                await page.goto(
                    locator,
                    wait_until="networkidle",
                    timeout=int(self.navigation_timeout * 1000),
                )
                await page.wait_for_timeout(int(self.settle_delay * 1000))
            except PlaywrightTimeoutError as exc:
                raise FetchTimeout(locator, f"navigation timed out: {exc}") from exc

            filename = await self._resolve_filename(page, family)
            if not filename:
                raise FetchNoFilename(locator, "could not determine filename")

            try:
                async with page.expect_download(timeout=int(timeout * 1000)) as download_info:
                    await page.click(family.download_selector, timeout=int(timeout * 1000))
                download = await download_info.value
                target = target_dir / filename
                await download.save_as(str(target))
            except PlaywrightTimeoutError as exc:
                raise FetchTimeout(locator, f"no download within {timeout:.0f}s") from exc
            if not target.exists():
                raise FetchTimeout(locator, f"download finished but {target} is missing")
            logger.info("downloaded %s -> %s", locator, target)
            return target
        except PlaywrightError as exc:
            raise FetchTransport(locator, str(exc)) from exc
        finally:
            try:
                await page.close()
            except PlaywrightError as exc:
                logger.debug("page close failed for %s: %s", locator, exc)

    async def _resolve_filename(self, page: Any, family: LocatorFamily) -> str:
        if family.filename_source == "page_title":
            raw = filename_from_title(await page.title())
        else:
            try:
                raw = await page.get_attribute(
                    'button[role="text"]',
                    "title",
                    timeout=FILENAME_LOOKUP_TIMEOUT_MS,
                )
            except PlaywrightTimeoutError:
                raw = None
        # Never let a page-supplied name escape the target directory.
        name = Path((raw or "").strip()).name
        return "" if name == ".." else name


__all__ = ["LOCATOR_FAMILIES", "LocatorFamily", "OneDriveFetcher", "family_for", "filename_from_title"]
