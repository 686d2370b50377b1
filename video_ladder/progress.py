from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable


LogCallback = Callable[[str], None]

ERROR_PERCENT = -1


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    percent: int
    message: str
    timestamp: str


ProgressSink = Callable[[ProgressEvent], None]


class ProgressReporter:
    # 百分比只增不减：低于已投递值的事件沿用已投递值，消息照常送达

    def __init__(
        self,
        job_id: str,
        sink: ProgressSink | None = None,
        log_cb: LogCallback | None = None,
    ) -> None:
        self.job_id = job_id
        self._sink = sink
        self._log_cb = log_cb
        self._lock = threading.Lock()
        self._last_percent = 0

    @property
    def last_percent(self) -> int:
        return self._last_percent

    def emit(self, percent: float, message: str) -> None:
        # 投递也在锁内完成，缩略图线程与编码线程的事件才不会乱序
        with self._lock:
            value = max(self._last_percent, min(100, max(0, int(percent))))
            self._last_percent = value
            self._deliver(value, message)

    def note(self, message: str) -> None:
        with self._lock:
            self._deliver(self._last_percent, message)

    def fail(self, message: str) -> None:
        self._deliver(ERROR_PERCENT, message)

    def _deliver(self, percent: int, message: str) -> None:
        if self._sink is None:
            return
        event = ProgressEvent(
            job_id=self.job_id,
            percent=percent,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            self._sink(event)
        except Exception as exc:  # noqa: BLE001
            if self._log_cb:
                self._log_cb(f"进度投递失败 job={self.job_id}: {exc}")


class QueueProgressSink:
    # 队列满时直接丢弃，不阻塞处理线程

    def __init__(self, maxsize: int = 1000) -> None:
        self.events: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, event: ProgressEvent) -> None:
        try:
            self.events.put_nowait(event)
        except queue.Full:
            self.dropped += 1

    def drain(self) -> list[ProgressEvent]:
        drained: list[ProgressEvent] = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained
