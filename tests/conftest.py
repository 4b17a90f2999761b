from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from rehoster.workflows.errors import FetchNoFilename, FetchTimeout
from rehoster.workflows.reconcile import normalize_name
from rehoster.workflows.upload import UploadedImage, UploadResponse

SAMPLE_HTML = """<html><body>
<p><a href="https://1drv.ms/u/s!AAA"><img src="https://onedrive.live.com/thumb/a.jpg?width=100"/></a></p>
<p><img src="https://onedrive.live.com/thumb/a.jpg?width=800"/></p>
<p><a href="https://1drv.ms/i/s!BBB"><img src="https://onedrive.live.com/thumb/b.jpg"/></a></p>
<p><a href="https://1drv.ms/u/s!AAA"><img src="https://cdn.example.com/a-copy.jpg"/></a></p>
<p><img src="https://images2.imgbox.com/aa/bb/done_o.png"/></p>
<p><img src="https://example.com/unrelated.png"/></p>
</body></html>
"""


class FakeFetcher:
    """Writes ``names[locator]`` into the target dir; fails the first N calls per ``failures``."""

    def __init__(self, names: Dict[str, str], failures: Optional[Dict[str, int]] = None, no_filename: Iterable[str] = ()):
        self.names = names
        self.failures = dict(failures or {})
        self.no_filename = set(no_filename)
        self.calls: List[str] = []

    async def fetch(self, locator: str, target_dir: Path, timeout: float) -> Path:
        self.calls.append(locator)
        if locator in self.no_filename:
            raise FetchNoFilename(locator, "fake page without filename")
        remaining = self.failures.get(locator, 0)
        if remaining:
            self.failures[locator] = remaining - 1
            raise FetchTimeout(locator, "fake timeout")
        path = target_dir / self.names[locator]
        path.write_bytes(locator.encode("utf-8"))
        return path


class FakeGallery:
    """Accepts everything except ``reject``; reports names the way imgbox folds them."""

    def __init__(self, reject: Iterable[str] = ()):
        self.reject = set(reject)
        self.calls: List[List[str]] = []

    def upload(self, items, options) -> UploadResponse:
        self.calls.append([item.display_name for item in items])
        response = UploadResponse(raw={"names": [item.display_name for item in items]})
        for item in items:
            if item.display_name in self.reject:
                response.failed.append(item.display_name)
                continue
            remote = normalize_name(item.display_name)
            response.succeeded.append(
                UploadedImage(
                    display_name=remote,
                    url=f"https://images2.imgbox.com/{remote}",
                    thumbnail_url=f"https://thumbs2.imgbox.com/{remote}",
                )
            )
        return response


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def sample_html() -> str:
    return SAMPLE_HTML
