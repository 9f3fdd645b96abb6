from __future__ import annotations

import threading
from datetime import datetime, timedelta

from convert_compress.progress_tracker import BatchProgress, ProgressTracker, format_timedelta


def test_counts_and_rates() -> None:
    tracker = ProgressTracker(4)
    tracker.start()
    tracker.complete_item("a.png")
    tracker.complete_item("b.png")
    tracker.fail_item("c.png")
    snapshot = tracker.cancel_item("d.png")

    assert snapshot.processed_files == 4
    assert snapshot.overall_progress == 100.0
    assert snapshot.success_rate == 50.0
    assert snapshot.last_item == "d.png"


def test_empty_progress() -> None:
    progress = BatchProgress(total_files=0)
    assert progress.overall_progress == 0.0
    assert progress.success_rate == 0.0
    assert progress.elapsed_time is None
    assert progress.estimated_remaining_time is None


def test_estimated_remaining_time() -> None:
    start = datetime(2026, 1, 1, 12, 0, 0)
    progress = BatchProgress(
        total_files=10,
        completed_files=5,
        start_time=start,
        end_time=start + timedelta(seconds=50),
    )
    assert progress.estimated_remaining_time == timedelta(seconds=50)


def test_concurrent_updates_are_counted() -> None:
    tracker = ProgressTracker(400)

    def work() -> None:
        for i in range(100):
            tracker.complete_item(f"{i}.png")

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert tracker.finish().completed_files == 400


def test_callback_errors_do_not_break_tracking() -> None:
    def broken(_snapshot) -> None:
        raise RuntimeError("ui gone")

    tracker = ProgressTracker(1, broken)
    tracker.start()
    assert tracker.complete_item("a.png").completed_files == 1


def test_status_text() -> None:
    tracker = ProgressTracker(2)
    tracker.start()
    tracker.complete_item("a.png")
    tracker.cancel_item("b.png")
    text = tracker.get_status_text()
    assert "進捗: 2/2" in text
    assert "中断: 1" in text


def test_format_timedelta() -> None:
    assert format_timedelta(timedelta(seconds=5)) == "5秒"
    assert format_timedelta(timedelta(seconds=65)) == "1分5秒"
    assert format_timedelta(timedelta(hours=2, minutes=3)) == "2時間3分"
