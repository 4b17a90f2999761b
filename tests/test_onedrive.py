import asyncio

import pytest

from rehoster.workflows import onedrive
from rehoster.workflows.errors import FetchNoFilename, FetchTimeout, FetchTransport
from rehoster.workflows.fetch_orchestrator import FetchOrchestrator, RetryPolicy
from rehoster.workflows.ledger import ResumeLedger
from rehoster.workflows.links import ResourceLink
from rehoster.workflows.onedrive import OneDriveFetcher, family_for, filename_from_title

FILE_LINK = "https://1drv.ms/u/s!AAA"
PHOTO_LINK = "https://1drv.ms/i/s!BBB"


class FakeDownload:
    def __init__(self, payload=b"image"):
        self.payload = payload

    async def save_as(self, path):
        with open(path, "wb") as handle:
            handle.write(self.payload)


class FakeDownloadInfo:
    def __init__(self, download):
        self._download = download

    @property
    def value(self):
        return self._resolve()

    async def _resolve(self):
        return self._download


class FakeExpectDownload:
    def __init__(self, download):
        self.info = FakeDownloadInfo(download)

    async def __aenter__(self):
        return self.info

    async def __aexit__(self, *exc_info):
        return False


class FakePage:
    def __init__(self, *, title="", button_title=None, goto_error=None, click_error=None, close_error=None):
        self._title = title
        self._button_title = button_title
        self.goto_error = goto_error
        self.click_error = click_error
        self.close_error = close_error
        self.visited = []
        self.clicked = []
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error

    async def wait_for_timeout(self, ms):
        return None

    async def title(self):
        return self._title

    async def get_attribute(self, selector, name, timeout=None):
        return self._button_title

    def expect_download(self, timeout=None):
        return FakeExpectDownload(FakeDownload())

    async def click(self, selector, timeout=None):
        self.clicked.append(selector)
        if self.click_error is not None:
            raise self.click_error

    async def close(self):
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeContext:
    def __init__(self, page=None, new_page_error=None):
        self.page = page
        self.new_page_error = new_page_error
        self.closed = False

    async def new_page(self):
        if self.new_page_error is not None:
            raise self.new_page_error
        return self.page

    async def close(self):
        self.closed = True


def _fetcher(context):
    fetcher = OneDriveFetcher(settle_delay=0)
    fetcher._context = context
    return fetcher


def test_family_for_known_prefixes():
    assert family_for(FILE_LINK).filename_source == "button_title"
    assert family_for(PHOTO_LINK).filename_source == "page_title"
    assert family_for("https://example.com/x") is None


def test_filename_from_title():
    assert filename_from_title("IMG 0001.jpg - OneDrive") == "IMG 0001.jpg"
    assert filename_from_title("") == ""


def test_file_link_uses_button_title_and_download_button(tmp_path):
    page = FakePage(button_title="My Photo (1).jpg")

    path = asyncio.run(_fetcher(FakeContext(page)).fetch(FILE_LINK, tmp_path, 5))

    assert path == tmp_path / "My Photo (1).jpg"
    assert path.read_bytes() == b"image"
    assert page.clicked == ['button[data-automationid="download"]']
    assert page.closed


def test_photo_link_uses_page_title(tmp_path):
    page = FakePage(title="b.jpg - OneDrive")

    path = asyncio.run(_fetcher(FakeContext(page)).fetch(PHOTO_LINK, tmp_path, 5))

    assert path.name == "b.jpg"
    assert page.clicked == ["#__photo-view-download"]


def test_page_supplied_name_cannot_leave_target_dir(tmp_path):
    target = tmp_path / "scratch"
    page = FakePage(button_title="../../outside.jpg")

    path = asyncio.run(_fetcher(FakeContext(page)).fetch(FILE_LINK, target, 5))

    assert path == target / "outside.jpg"
    assert not (tmp_path / "outside.jpg").exists()


@pytest.mark.parametrize("title", ["", "   ", "..", " - OneDrive"])
def test_missing_filename_is_its_own_error(tmp_path, title):
    page = FakePage(title=title)

    with pytest.raises(FetchNoFilename):
        asyncio.run(_fetcher(FakeContext(page)).fetch(PHOTO_LINK, tmp_path, 5))

    assert page.clicked == []
    assert page.closed


def test_navigation_timeout_maps_to_fetch_timeout(tmp_path):
    page = FakePage(goto_error=onedrive.PlaywrightTimeoutError("goto timed out"), close_error=onedrive.PlaywrightError("gone"))

    with pytest.raises(FetchTimeout):
        asyncio.run(_fetcher(FakeContext(page)).fetch(PHOTO_LINK, tmp_path, 5))

    assert page.closed


def test_download_timeout_maps_to_fetch_timeout(tmp_path):
    page = FakePage(title="b.jpg - OneDrive", click_error=onedrive.PlaywrightTimeoutError("no download"))

    with pytest.raises(FetchTimeout):
        asyncio.run(_fetcher(FakeContext(page)).fetch(PHOTO_LINK, tmp_path, 5))


def test_broken_browser_is_a_transport_error_and_is_discarded(tmp_path):
    context = FakeContext(new_page_error=onedrive.PlaywrightError("Target page, context or browser has been closed"))
    fetcher = _fetcher(context)

    with pytest.raises(FetchTransport):
        asyncio.run(fetcher.fetch(FILE_LINK, tmp_path, 5))

    assert context.closed
    assert fetcher._context is None


def test_unsupported_locator_is_a_transport_error(tmp_path):
    with pytest.raises(FetchTransport):
        asyncio.run(_fetcher(FakeContext(FakePage())).fetch("https://example.com/x", tmp_path, 5))


def test_browser_failures_are_retried_per_resource(tmp_path, monkeypatch):
    fetcher = OneDriveFetcher(settle_delay=0)
    launches = []

    async def relaunch():
        if fetcher._context is None:
            launches.append(1)
            fetcher._context = FakeContext(new_page_error=onedrive.PlaywrightError("browser crashed"))

    monkeypatch.setattr(fetcher, "start", relaunch)
    links = [ResourceLink(FILE_LINK, []), ResourceLink(PHOTO_LINK, [])]
    orchestrator = FetchOrchestrator(
        fetcher,
        ResumeLedger(tmp_path / "ledger.json"),
        tmp_path / "downloads",
        policy=RetryPolicy(max_retries=2, retry_delay=0),
        failure_ceiling=5,
        sleep=lambda _: asyncio.sleep(0),
    )

    outcome = asyncio.run(orchestrator.resolve_all(links))

    assert [resolved.link.locator for resolved in outcome.failed] == [FILE_LINK, PHOTO_LINK]
    assert orchestrator.fetch_attempts == 6
    assert len(launches) == 6
