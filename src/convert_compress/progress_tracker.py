"""
バッチ処理の進捗を集計するユーティリティモジュール

ワーカースレッドから同時に更新されるため、カウンタはロックで保護する。
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger


@dataclass(frozen=True)
class BatchProgress:
    """ある時点でのバッチ進捗のスナップショット"""
    total_files: int
    completed_files: int = 0
    failed_files: int = 0
    cancelled_files: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_item: Optional[str] = None

    @property
    def processed_files(self) -> int:
        """処理済みファイル数"""
        return self.completed_files + self.failed_files + self.cancelled_files

    @property
    def overall_progress(self) -> float:
        """全体の進捗率"""
        if self.total_files == 0:
            return 0.0
        return (self.processed_files / self.total_files) * 100

    @property
    def success_rate(self) -> float:
        """成功率"""
        if self.processed_files == 0:
            return 0.0
        return (self.completed_files / self.processed_files) * 100

    @property
    def elapsed_time(self) -> Optional[timedelta]:
        if not self.start_time:
            return None
        end = self.end_time or datetime.now()
        return end - self.start_time

    @property
    def estimated_remaining_time(self) -> Optional[timedelta]:
        """残り時間の推定"""
        elapsed = self.elapsed_time
        if not elapsed or self.processed_files == 0:
            return None

        seconds = elapsed.total_seconds()
        if seconds <= 0:
            return None
        rate = self.processed_files / seconds
        remaining_files = self.total_files - self.processed_files
        return timedelta(seconds=remaining_files / rate)


ProgressCallback = Callable[[BatchProgress], None]


class ProgressTracker:
    """進捗トラッカー"""

    def __init__(self, total_files: int, callback: Optional[ProgressCallback] = None):
        self._lock = threading.Lock()
        self._callback = callback
        self._total = total_files
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._start_time: Optional[datetime] = None
        self._end_time: Optional[datetime] = None
        self._last_item: Optional[str] = None

    def start(self) -> None:
        with self._lock:
            self._start_time = datetime.now()
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def complete_item(self, name: str) -> BatchProgress:
        return self._record(name, completed=1)

    def fail_item(self, name: str) -> BatchProgress:
        return self._record(name, failed=1)

    def cancel_item(self, name: str) -> BatchProgress:
        return self._record(name, cancelled=1)

    def finish(self) -> BatchProgress:
        with self._lock:
            self._end_time = datetime.now()
            return self._snapshot_locked()

    def snapshot(self) -> BatchProgress:
        with self._lock:
            return self._snapshot_locked()

    def get_status_text(self) -> str:
        """ステータステキストを取得"""
        bp = self.snapshot()
        status_parts = [
            f"進捗: {bp.processed_files}/{bp.total_files} ({bp.overall_progress:.1f}%)",
            f"成功: {bp.completed_files}",
            f"失敗: {bp.failed_files}",
        ]
        if bp.cancelled_files:
            status_parts.append(f"中断: {bp.cancelled_files}")
        if bp.elapsed_time:
            status_parts.append(f"経過: {format_timedelta(bp.elapsed_time)}")
        if bp.estimated_remaining_time:
            status_parts.append(f"残り: {format_timedelta(bp.estimated_remaining_time)}")
        return " | ".join(status_parts)

    def _record(self, name: str, completed: int = 0, failed: int = 0, cancelled: int = 0) -> BatchProgress:
        with self._lock:
            self._completed += completed
            self._failed += failed
            self._cancelled += cancelled
            self._last_item = name
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return snapshot

    def _snapshot_locked(self) -> BatchProgress:
        return BatchProgress(
            total_files=self._total,
            completed_files=self._completed,
            failed_files=self._failed,
            cancelled_files=self._cancelled,
            start_time=self._start_time,
            end_time=self._end_time,
            last_item=self._last_item,
        )

    def _notify(self, snapshot: BatchProgress) -> None:
        if self._callback is None:
            return
        try:
            self._callback(snapshot)
        except Exception as e:
            # 表示側の失敗で処理を止めない
            logger.warning(f"進捗コールバックでエラーが発生しました: {e}")


def format_timedelta(td: timedelta) -> str:
    """timedelta を読みやすい形式に変換"""
    total_seconds = int(td.total_seconds())
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}時間{minutes}分"
    elif minutes > 0:
        return f"{minutes}分{seconds}秒"
    else:
        return f"{seconds}秒"
