from __future__ import annotations

import threading
from pathlib import Path

import pytest

from convert_compress.batch import BatchItem, BatchRunner
from convert_compress.errors import DecodeError, UnsupportedFormat
from convert_compress.file_writer import AtomicFileWriter
from convert_compress.operations import Resize
from convert_compress.pipeline import Pipeline
from convert_compress.resize_math import PercentResize, PixelSize
from convert_compress.usage_events import InMemoryEventSink, UsageEventKind


@pytest.fixture
def half_png(registry, catalog) -> Pipeline:
    return Pipeline(operations=(Resize(PercentResize(0.5)),), encoders=registry, final_format=catalog.get("png"))


def test_batch_item_requires_source() -> None:
    with pytest.raises(ValueError):
        BatchItem()


def test_outcomes_keep_input_order(catalog, half_png, make_image) -> None:
    items = [BatchItem(image=make_image(size=(100 + i * 10, 50))) for i in range(8)]
    report = BatchRunner(catalog, max_workers=4).run(half_png, items)

    assert [o.item for o in report.outcomes] == items
    assert [o.result.pixel_size for o in report.outcomes] == [
        PixelSize(50 + i * 5, 25) for i in range(8)
    ]
    assert report.all_succeeded
    assert report.progress.completed_files == 8


def test_single_failure_does_not_stop_batch(catalog, registry, make_image, event_sink: InMemoryEventSink) -> None:
    pipeline = Pipeline(operations=(), encoders=registry)
    items = [
        BatchItem(image=make_image()),
        BatchItem(image=make_image(source_format=None)),
        BatchItem(image=make_image(source_format="jpeg")),
    ]
    report = BatchRunner(catalog, event_sink=event_sink, max_workers=2).run(pipeline, items)

    statuses = [o.status for o in report.outcomes]
    assert statuses == ["success", "failed", "success"]
    assert isinstance(report.outcomes[1].error, UnsupportedFormat)
    assert not report.all_succeeded
    assert len(report.failed) == 1
    assert event_sink.total_image_conversions == 2
    assert event_sink.total_pipeline_applications == 1


def test_cancel_before_start_skips_everything(catalog, half_png, make_image, event_sink: InMemoryEventSink) -> None:
    cancel = threading.Event()
    cancel.set()
    items = [BatchItem(image=make_image()) for _ in range(3)]

    report = BatchRunner(catalog, event_sink=event_sink).run(half_png, items, cancel_event=cancel)

    assert report.cancelled
    assert all(o.status == "cancelled" for o in report.outcomes)
    assert event_sink.events == []


def test_cancel_during_batch_finishes_current_image(catalog, half_png, make_image, event_sink: InMemoryEventSink) -> None:
    cancel = threading.Event()
    items = [BatchItem(image=make_image()) for _ in range(4)]

    def on_progress(snapshot) -> None:
        if snapshot.completed_files == 1:
            cancel.set()

    report = BatchRunner(catalog, event_sink=event_sink, max_workers=1).run(
        half_png, items, cancel_event=cancel, progress_callback=on_progress
    )

    assert [o.status for o in report.outcomes] == ["success", "cancelled", "cancelled", "cancelled"]
    assert report.cancelled
    # 中断したバッチは適用イベントを出さない
    assert event_sink.total_image_conversions == 1
    assert event_sink.total_pipeline_applications == 0


def test_no_pipeline_event_when_everything_failed(catalog, registry, make_image, event_sink: InMemoryEventSink) -> None:
    pipeline = Pipeline(operations=(), encoders=registry, final_format=catalog.get("heic"))
    report = BatchRunner(catalog, event_sink=event_sink).run(pipeline, [BatchItem(image=make_image())])
    assert report.outcomes[0].status == "failed"
    assert event_sink.events == []


def test_empty_batch(catalog, half_png) -> None:
    report = BatchRunner(catalog).run(half_png, [])
    assert report.outcomes == ()
    assert not report.cancelled
    assert not report.all_succeeded


def test_files_are_decoded_and_written(catalog, registry, sample_files, tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    pipeline = Pipeline(
        operations=(Resize(PercentResize(0.5)),),
        encoders=registry,
        final_format=catalog.get("jpeg"),
        export_directory=out_dir,
    )
    runner = BatchRunner(catalog, writer=AtomicFileWriter(catalog))

    report = runner.run(pipeline, [BatchItem(source_path=p) for p in sample_files])

    assert report.all_succeeded
    assert sorted(p.name for p in out_dir.iterdir()) == ["logo.jpg", "photo.jpg"]
    assert report.outcomes[0].output_path == out_dir / "photo.jpg"
    assert report.outcomes[0].result.pixel_size == PixelSize(320, 240)


def test_unreadable_file_is_reported(catalog, half_png, tmp_path: Path) -> None:
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not really a png")

    report = BatchRunner(catalog).run(half_png, [BatchItem(source_path=broken)])
    assert report.outcomes[0].status == "failed"
    assert isinstance(report.outcomes[0].error, DecodeError)


def test_progress_callback_sees_every_item(catalog, half_png, make_image) -> None:
    seen = []
    lock = threading.Lock()

    def on_progress(snapshot) -> None:
        with lock:
            seen.append(snapshot.processed_files)

    BatchRunner(catalog, max_workers=3).run(
        half_png, [BatchItem(image=make_image()) for _ in range(5)], progress_callback=on_progress
    )
    assert sorted(seen)[-1] == 5
    assert 0 in seen
