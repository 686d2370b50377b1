from __future__ import annotations

from pathlib import Path
from typing import Callable

from .ffmpeg_pipeline import FFmpegError, run_ffmpeg
from .progress import LogCallback


THUMBNAIL_COUNT = 5
THUMBNAIL_SIZE = "320x180"
THUMBNAIL_EXT = "jpg"

ThumbnailCallback = Callable[[int, int], None]


class ThumbnailError(FFmpegError):
    pass


def thumbnail_filename(job_id: str, index: int) -> str:
    return f"{job_id}_thumb_{index}.{THUMBNAIL_EXT}"


def thumbnail_timestamps(duration_sec: float, count: int) -> list[float]:
    return [duration_sec * i / (count + 1) for i in range(1, count + 1)]


def extract_thumbnail(
    video_path: Path,
    output_path: Path,
    timestamp_sec: float,
    size: str = THUMBNAIL_SIZE,
    timeout_sec: float = 60,
) -> None:
    cmd = [
        "ffmpeg",
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-ss",
        f"{timestamp_sec:.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-s",
        size,
        str(output_path),
    ]
    try:
        run_ffmpeg(cmd, timeout_sec=timeout_sec)
    except FFmpegError as exc:
        raise ThumbnailError(str(exc)) from exc
    if not output_path.is_file():
        raise ThumbnailError(f"缩略图未生成: {output_path.name}")


def generate_thumbnails(
    video_path: Path,
    output_dir: Path,
    job_id: str,
    duration_sec: float,
    count: int = THUMBNAIL_COUNT,
    size: str = THUMBNAIL_SIZE,
    timeout_sec: float = 60,
    log_cb: LogCallback | None = None,
    on_thumbnail: ThumbnailCallback | None = None,
) -> tuple[str, ...]:
    count = max(0, min(count, THUMBNAIL_COUNT))
    thumbnails: list[str] = []

    for index, timestamp in enumerate(thumbnail_timestamps(duration_sec, count), start=1):
        filename = thumbnail_filename(job_id, index)
        try:
            extract_thumbnail(
                video_path=video_path,
                output_path=output_dir / filename,
                timestamp_sec=timestamp,
                size=size,
                timeout_sec=timeout_sec,
            )
        except ThumbnailError as exc:
            _log(log_cb, f"缩略图 {index}/{count} 生成失败: {exc}")
            continue

        thumbnails.append(filename)
        if on_thumbnail:
            on_thumbnail(index, count)

    return tuple(thumbnails)


def _log(log_cb: LogCallback | None, message: str) -> None:
    if log_cb:
        log_cb(message)
