"""複数画像へのパイプライン一括適用。

画像ごとの処理は独立しているため、上限付きのスレッドプールで並列に実行する。
キャンセルは画像の処理開始前にだけ確認し、処理中の画像は最後まで実行する。
1枚の失敗は結果に記録し、残りの画像の処理は続ける。
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Literal, Optional, Tuple

from loguru import logger

from .errors import PipelineError
from .file_writer import FileWriter
from .format_catalog import FormatCapabilities
from .image_buffer import DecodedImage, EncodeResult, decode_image
from .pipeline import Pipeline
from .progress_tracker import BatchProgress, ProgressCallback, ProgressTracker
from .usage_events import EventSink, NullEventSink, UsageEvent, UsageEventKind

ItemStatus = Literal["success", "failed", "cancelled"]


def default_worker_count() -> int:
    return max(1, min(4, os.cpu_count() or 1))


@dataclass(frozen=True)
class BatchItem:
    """処理対象1件。``image`` がなければ ``source_path`` から読み込む。"""

    source_path: Optional[Path] = None
    image: Optional[DecodedImage] = None

    def __post_init__(self) -> None:
        if self.source_path is None and self.image is None:
            raise ValueError("source_path または image のどちらかが必要です")

    @property
    def display_name(self) -> str:
        path = self.source_path or (self.image.source_path if self.image else None)
        return path.name if path is not None else "<memory>"


@dataclass(frozen=True)
class ItemOutcome:
    item: BatchItem
    status: ItemStatus
    result: Optional[EncodeResult] = None
    output_path: Optional[Path] = None
    error: Optional[PipelineError] = None

    @property
    def success(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class BatchReport:
    outcomes: Tuple[ItemOutcome, ...]
    cancelled: bool
    progress: BatchProgress

    @property
    def succeeded(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status == "success"]

    @property
    def failed(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    @property
    def all_succeeded(self) -> bool:
        return bool(self.outcomes) and all(o.success for o in self.outcomes)


class BatchRunner:
    """パイプラインを画像群へ並列適用する。"""

    def __init__(
        self,
        catalog: FormatCapabilities,
        writer: Optional[FileWriter] = None,
        event_sink: Optional[EventSink] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.catalog = catalog
        self.writer = writer
        self.event_sink = event_sink or NullEventSink()
        self.max_workers = max(1, int(max_workers)) if max_workers else default_worker_count()

    def run(
        self,
        pipeline: Pipeline,
        items: Iterable[BatchItem],
        *,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchReport:
        """全件を処理して結果を入力順に返す。

        Args:
            pipeline: 適用するパイプライン（全画像で共有）
            items: 処理対象
            cancel_event: セットされると未着手の画像をスキップする
            progress_callback: 1件終わるごとに進捗スナップショットを受け取る
        """
        batch_items = list(items)
        cancel = cancel_event or threading.Event()
        tracker = ProgressTracker(len(batch_items), progress_callback)
        tracker.start()
        logger.info(f"バッチ処理を開始します: {len(batch_items)}件 (workers={self.max_workers})")

        if batch_items:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="convert") as executor:
                futures = [
                    executor.submit(self._process_item, pipeline, item, cancel, tracker)
                    for item in batch_items
                ]
                outcomes = tuple(future.result() for future in futures)
        else:
            outcomes = ()

        progress = tracker.finish()
        cancelled = any(o.status == "cancelled" for o in outcomes)
        self._emit_usage_events(outcomes, cancelled)
        logger.info(f"バッチ処理が終了しました: {tracker.get_status_text()}")
        return BatchReport(outcomes=outcomes, cancelled=cancelled, progress=progress)

    def _process_item(
        self,
        pipeline: Pipeline,
        item: BatchItem,
        cancel: threading.Event,
        tracker: ProgressTracker,
    ) -> ItemOutcome:
        name = item.display_name
        if cancel.is_set():
            tracker.cancel_item(name)
            return ItemOutcome(item=item, status="cancelled")

        try:
            image = item.image if item.image is not None else decode_image(item.source_path, self.catalog)
            result = pipeline.apply(image)
            output_path = None
            if self.writer is not None:
                source_path = item.source_path or image.source_path
                output_path = self.writer.write(result, source_path, pipeline.export_directory)
        except PipelineError as e:
            logger.error(f"✗ {name}: {e}")
            tracker.fail_item(name)
            return ItemOutcome(item=item, status="failed", error=e)
        except Exception as e:
            logger.exception(f"✗ {name}: 予期しないエラー")
            tracker.fail_item(name)
            error = PipelineError(f"予期しないエラー: {e}")
            error.__cause__ = e
            return ItemOutcome(item=item, status="failed", error=error)

        logger.info(f"✔ {name} → {output_path.name if output_path else result.image_format} ({result.pixel_size})")
        tracker.complete_item(name)
        return ItemOutcome(item=item, status="success", result=result, output_path=output_path)

    def _emit_usage_events(self, outcomes: Tuple[ItemOutcome, ...], cancelled: bool) -> None:
        successes = [o for o in outcomes if o.success]
        for _ in successes:
            self.event_sink.emit(UsageEvent(UsageEventKind.IMAGE_CONVERSION))
        if successes and not cancelled:
            self.event_sink.emit(UsageEvent(UsageEventKind.PIPELINE_APPLIED))
