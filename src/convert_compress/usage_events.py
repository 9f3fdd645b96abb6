"""利用状況イベントと、その送り先（EventSink）。

コアはイベントを ``EventSink.emit`` に渡すだけで、保存や集計は送り先の責務。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Protocol


class UsageEventKind(str, Enum):
    IMAGE_CONVERSION = "imageConversion"
    PIPELINE_APPLIED = "pipelineApplied"


@dataclass(frozen=True)
class UsageEvent:
    kind: UsageEventKind
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "timestamp": self.timestamp.isoformat(timespec="seconds")}


class EventSink(Protocol):
    def emit(self, event: UsageEvent) -> None: ...


class NullEventSink:
    def emit(self, event: UsageEvent) -> None:
        return None


class InMemoryEventSink:
    """イベントをメモリ上に保持し、件数の集計を提供する。"""

    def __init__(self, events: Optional[List[UsageEvent]] = None) -> None:
        self._events: List[UsageEvent] = list(events or [])
        self._lock = threading.Lock()

    def emit(self, event: UsageEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[UsageEvent]:
        with self._lock:
            return list(self._events)

    def replace_all(self, events: List[UsageEvent]) -> None:
        with self._lock:
            self._events = list(events)

    @property
    def total_image_conversions(self) -> int:
        return self.count(UsageEventKind.IMAGE_CONVERSION)

    @property
    def total_pipeline_applications(self) -> int:
        return self.count(UsageEventKind.PIPELINE_APPLIED)

    def count(
        self,
        kind: UsageEventKind,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """指定期間 [start, end) のイベント数。"""
        return sum(
            1
            for event in self.events
            if event.kind == kind
            and (start is None or event.timestamp >= start)
            and (end is None or event.timestamp < end)
        )

    def count_on_same_day(self, kind: UsageEventKind, date: datetime) -> int:
        day_start = date.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.count(kind, day_start, day_start + timedelta(days=1))
