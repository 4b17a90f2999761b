import json

import pytest

from conftest import FakeGallery
from rehoster.workflows.errors import UploadBatchError
from rehoster.workflows.ledger import LedgerEntry, ResumeLedger
from rehoster.workflows.upload import UploadBatcher, UploadItem, UploadResponse, chunked


def _items(tmp_path, *names):
    items = []
    for idx, name in enumerate(names):
        path = tmp_path / name
        path.write_bytes(b"x")
        items.append(UploadItem(source=path, display_name=name, locator=f"https://1drv.ms/u/s!{idx}"))
    return items


def test_chunked_sizes(tmp_path):
    items = _items(tmp_path, "a.png", "b.png", "c.png", "d.png", "e.png")
    assert [len(batch) for batch in chunked(items, 2)] == [2, 2, 1]


def test_batches_are_sequential_and_paced(tmp_path):
    sleeps = []
    gallery = FakeGallery()
    batcher = UploadBatcher(gallery, batch_size=2, batch_delay=1.5, retry_rounds=0, sleep=sleeps.append)

    report = batcher.upload(_items(tmp_path, "a.png", "b.png", "c.png"))

    assert gallery.calls == [["a.png", "b.png"], ["c.png"]]
    assert sleeps == [1.5]
    assert sorted(report.uploaded) == ["a.png", "b.png", "c.png"]
    assert report.failed == []


def test_rejected_items_are_retried_as_reduced_batch(tmp_path):
    class FlakyGallery(FakeGallery):
        def upload(self, items, options):
            response = super().upload(items, options)
            if len(self.calls) == 1:
                flaky = [img for img in response.succeeded if img.display_name == "b.png"]
                for img in flaky:
                    response.succeeded.remove(img)
                    response.failed.append("b.png")
            return response

    gallery = FlakyGallery()
    batcher = UploadBatcher(gallery, batch_size=10, batch_delay=0, retry_rounds=2, sleep=lambda _: None)

    report = batcher.upload(_items(tmp_path, "a.png", "b.png", "c.png"))

    assert gallery.calls == [["a.png", "b.png", "c.png"], ["b.png"]]
    assert "b.png" in report.uploaded
    assert report.failed == []


def test_items_still_rejected_after_rounds_are_reported(tmp_path):
    gallery = FakeGallery(reject={"b.png"})
    batcher = UploadBatcher(gallery, batch_size=10, batch_delay=0, retry_rounds=1, sleep=lambda _: None)

    report = batcher.upload(_items(tmp_path, "a.png", "b.png", "c.png"))

    assert gallery.calls == [["a.png", "b.png", "c.png"], ["b.png"]]
    assert [item.display_name for item in report.failed] == ["b.png"]
    assert sorted(report.uploaded) == ["a.png", "c.png"]


def test_success_is_merged_into_ledger_by_locator(tmp_path):
    ledger = ResumeLedger(tmp_path / "ledger.json")
    items = _items(tmp_path, "My Photo (1).png")
    ledger.set(items[0].locator, LedgerEntry(local_filename="My Photo (1).png"))
    batcher = UploadBatcher(FakeGallery(), ledger=ledger, batch_delay=0, sleep=lambda _: None)

    batcher.upload(items)

    entry = ResumeLedger(tmp_path / "ledger.json").load()[items[0].locator]
    assert entry.local_filename == "My Photo (1).png"
    assert entry.remote_url == "https://images2.imgbox.com/my_photo__1_.png"
    assert entry.remote_thumbnail_url == "https://thumbs2.imgbox.com/my_photo__1_.png"


def test_batch_error_stops_and_keeps_earlier_progress(tmp_path):
    class BrokenSecondBatch(FakeGallery):
        def upload(self, items, options):
            if self.calls:
                raise UploadBatchError("gallery down")
            return super().upload(items, options)

    batcher = UploadBatcher(BrokenSecondBatch(), batch_size=1, batch_delay=0, sleep=lambda _: None)

    report = batcher.upload(_items(tmp_path, "a.png", "b.png", "c.png"))

    assert report.error is not None
    assert report.error.batch_index == 2
    assert list(report.uploaded) == ["a.png"]
    assert [item.display_name for item in report.failed] == ["b.png", "c.png"]


def test_raw_responses_are_dumped(tmp_path):
    dump_dir = tmp_path / "artifacts"
    batcher = UploadBatcher(FakeGallery(reject={"b.png"}), batch_size=1, batch_delay=0, retry_rounds=1, dump_dir=dump_dir, sleep=lambda _: None)

    batcher.upload(_items(tmp_path, "a.png", "b.png"))

    names = sorted(p.name for p in dump_dir.iterdir())
    assert names == ["upload_batch_001.json", "upload_batch_001_retry1.json", "upload_batch_002.json"]
    payload = json.loads((dump_dir / "upload_batch_002.json").read_text(encoding="utf-8"))
    assert payload["failed"] == ["b.png"]
    assert payload["raw"] == {"names": ["b.png"]}


def test_omitted_items_count_as_rejected(tmp_path):
    class SilentGallery:
        def upload(self, items, options):
            return UploadResponse()

    report = UploadBatcher(SilentGallery(), retry_rounds=0, sleep=lambda _: None).upload(_items(tmp_path, "a.png"))
    assert [item.display_name for item in report.failed] == ["a.png"]


@pytest.mark.parametrize("size", [0, -3])
def test_batch_size_is_at_least_one(size):
    assert UploadBatcher(FakeGallery(), batch_size=size).batch_size == 1


def test_names_folding_alike_are_not_recorded_or_retried(tmp_path):
    ledger = ResumeLedger(tmp_path / "ledger.json")
    gallery = FakeGallery()
    items = _items(tmp_path, "My Photo.jpg", "my_photo.jpg")
    batcher = UploadBatcher(gallery, ledger=ledger, batch_delay=0, retry_rounds=2, sleep=lambda _: None)

    report = batcher.upload(items)

    assert gallery.calls == [["My Photo.jpg", "my_photo.jpg"]]
    assert report.failed == []
    assert ledger.get(items[0].locator) is None
    assert ledger.get(items[1].locator) is None
