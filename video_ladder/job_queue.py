from __future__ import annotations

import shutil
import tempfile
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from .downloader import DownloadError, download_video, is_remote_source, source_suffix
from .ffmpeg_pipeline import FFmpegError
from .manifest import ManifestWriteError
from .models import Config, JobOutcome, JobRequest, ProcessingResult, QueueStatus
from .orchestrator import process_video
from .progress import LogCallback, ProgressReporter, ProgressSink


Processor = Callable[..., ProcessingResult]
CompleteCallback = Callable[[JobOutcome], None]


MAX_KEPT_OUTCOMES = 100


class JobQueue:
    # 同一 job_id 在排队或处理中时不能重复加入，每个任务独占输出目录

    def __init__(
        self,
        config: Config,
        processor: Processor = process_video,
        progress_sink: ProgressSink | None = None,
        log_cb: LogCallback | None = None,
        on_complete: CompleteCallback | None = None,
        max_outcomes: int = MAX_KEPT_OUTCOMES,
    ) -> None:
        self.config = config
        self.max_concurrent = max(config.max_concurrent_jobs, 1)
        self.max_outcomes = max(max_outcomes, 1)
        self.outcomes: dict[str, JobOutcome] = {}
        self._processor = processor
        self._progress_sink = progress_sink
        self._log_cb = log_cb
        self._on_complete = on_complete
        self._pending: deque[JobRequest] = deque()
        self._processing: dict[str, JobRequest] = {}
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._closed = False
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="video-job"
        )

    def __enter__(self) -> JobQueue:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def add(self, job_id: str, source: str | Path, output_dir: Path) -> JobRequest:
        request = JobRequest(job_id=job_id, source=str(source), output_dir=Path(output_dir))
        with self._lock:
            if self._closed:
                raise RuntimeError("队列已关闭")
            if job_id in self._processing or self._find_pending(job_id) is not None:
                raise ValueError(f"任务已在队列中: {job_id}")
            self._pending.append(request)
            queue_length = len(self._pending)

        _log(self._log_cb, f"job={job_id} 已加入队列，当前排队 {queue_length} 个")
        self._process_next()
        return request

    def status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                queue_length=len(self._pending),
                processing=list(self._processing),
                active_jobs=len(self._processing),
                max_concurrent=self.max_concurrent,
            )

    def is_processing(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._processing

    def is_queued(self, job_id: str) -> bool:
        with self._lock:
            return self._find_pending(job_id) is not None

    def remove(self, job_id: str) -> bool:
        with self._lock:
            request = self._find_pending(job_id)
            if request is None:
                return False
            self._pending.remove(request)
            self._changed.notify_all()
        _log(self._log_cb, f"job={job_id} 已移出队列")
        return True

    def clear(self) -> int:
        with self._lock:
            count = len(self._pending)
            self._pending.clear()
            self._changed.notify_all()
        _log(self._log_cb, f"已清空队列中的 {count} 个任务")
        return count

    def pop_outcome(self, job_id: str) -> JobOutcome | None:
        with self._lock:
            return self.outcomes.pop(job_id, None)

    def wait(self, timeout: float | None = None) -> bool:
        with self._changed:
            return self._changed.wait_for(
                lambda: not self._pending and not self._processing, timeout=timeout
            )

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            self._pending.clear()
        self._executor.shutdown(wait=wait)

    def _find_pending(self, job_id: str) -> JobRequest | None:
        return next((item for item in self._pending if item.job_id == job_id), None)

    def _process_next(self) -> None:
        with self._lock:
            while (
                not self._closed
                and self._pending
                and len(self._processing) < self.max_concurrent
            ):
                request = self._pending.popleft()
                self._processing[request.job_id] = request
                _log(
                    self._log_cb,
                    f"job={request.job_id} 开始处理，活动任务 "
                    f"{len(self._processing)}/{self.max_concurrent}",
                )
                self._executor.submit(self._run, request)

    def _run(self, request: JobRequest) -> None:
        outcome = self._execute(request)

        with self._lock:
            self._processing.pop(request.job_id, None)
            self.outcomes.pop(request.job_id, None)
            self.outcomes[request.job_id] = outcome
            # 只保留最近的结果，最早完成的先淘汰
            while len(self.outcomes) > self.max_outcomes:
                self.outcomes.pop(next(iter(self.outcomes)))
            self._changed.notify_all()

        if outcome.status == "ready":
            _log(self._log_cb, f"job={outcome.job_id} 成功，耗时 {outcome.duration_sec:.1f}s")
        else:
            _log(self._log_cb, f"job={outcome.job_id} 失败 -> {outcome.error}")

        if self._on_complete:
            try:
                self._on_complete(outcome)
            except Exception as exc:  # noqa: BLE001
                _log(self._log_cb, f"job={outcome.job_id} 完成回调异常: {exc}")

        self._process_next()

    def _execute(self, request: JobRequest) -> JobOutcome:
        started_at = time.monotonic()
        work_dir: Path | None = None

        try:
            input_path = Path(request.source)
            if is_remote_source(request.source):
                work_dir = Path(tempfile.mkdtemp(prefix="video_ladder_"))
                input_path = work_dir / f"source{source_suffix(request.source)}"
                download_video(
                    video_url=request.source,
                    destination=input_path,
                    max_bytes=self.config.max_video_mb * 1024 * 1024,
                    retries=self.config.download_retries,
                    total_timeout_sec=self.config.download_timeout_sec,
                )

            result = self._processor(
                job_id=request.job_id,
                input_path=input_path,
                output_dir=request.output_dir,
                config=self.config,
                progress_sink=self._progress_sink,
                log_cb=self._log_cb,
            )
            error = "" if result.status == "ready" else "所有码率档位均失败"
            return JobOutcome(
                job_id=request.job_id,
                status=result.status,
                error=error,
                duration_sec=time.monotonic() - started_at,
                result=result,
            )
        except DownloadError as exc:
            ProgressReporter(request.job_id, self._progress_sink, self._log_cb).fail(
                f"处理失败: {exc}"
            )
            return self._failed(request, str(exc), started_at)
        except (FFmpegError, ManifestWriteError) as exc:
            return self._failed(request, str(exc), started_at)
        except Exception as exc:  # noqa: BLE001
            return self._failed(request, f"未预期错误: {exc}", started_at)
        finally:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)

    @staticmethod
    def _failed(request: JobRequest, error: str, started_at: float) -> JobOutcome:
        return JobOutcome(
            job_id=request.job_id,
            status="error",
            error=error,
            duration_sec=time.monotonic() - started_at,
        )


def _log(log_cb: LogCallback | None, message: str) -> None:
    if log_cb:
        log_cb(message)
