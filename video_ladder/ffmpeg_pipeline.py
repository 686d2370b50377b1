from __future__ import annotations

import json
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Sequence

from .models import SourceMetadata


ProgressSecondsCallback = Callable[[float], None]


class FFmpegError(RuntimeError):
    pass


class FFmpegTimeoutError(FFmpegError):
    pass


class ProbeError(FFmpegError):
    pass


def _parse_positive_int(raw: object) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 0
    return value if value > 0 else 0


def probe_video(video_path: Path, timeout_sec: float = 60) -> SourceMetadata:
    if not video_path.is_file():
        raise ProbeError(f"源文件不存在或不可读: {video_path}")

    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_streams",
        "-show_format",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout_sec,
        )
    except FileNotFoundError as exc:
        raise ProbeError("未找到 ffprobe 可执行文件") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProbeError("ffprobe 超时") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else ""
        raise ProbeError(f"ffprobe 失败: {stderr or exc}") from exc

    try:
        payload = json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise ProbeError("ffprobe 输出无法解析") from exc

    return parse_probe_payload(payload, fallback_size=video_path.stat().st_size)


def parse_probe_payload(payload: dict, fallback_size: int = 0) -> SourceMetadata:
    streams = payload.get("streams", [])
    format_data = payload.get("format", {})

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        raise ProbeError("输入文件缺少视频轨")

    width = _parse_positive_int(video_stream.get("width"))
    height = _parse_positive_int(video_stream.get("height"))
    if width <= 0 or height <= 0:
        raise ProbeError("无法获取视频分辨率")

    duration_str = format_data.get("duration") or video_stream.get("duration")
    try:
        duration = float(duration_str) if duration_str is not None else 0.0
    except (TypeError, ValueError):
        duration = 0.0

    size_bytes = _parse_positive_int(format_data.get("size")) or fallback_size

    return SourceMetadata(
        duration_sec=max(duration, 0.0),
        width=width,
        height=height,
        size_bytes=size_bytes,
    )


def parse_progress_seconds(line: str) -> float | None:
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    # out_time_ms 实际单位也是微秒
    if key in {"out_time_us", "out_time_ms"}:
        try:
            return max(int(value), 0) / 1_000_000
        except ValueError:
            return None
    if key == "out_time":
        parts = value.split(":")
        if len(parts) != 3:
            return None
        try:
            hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
        except ValueError:
            return None
        return max(hours * 3600 + minutes * 60 + seconds, 0.0)
    return None


def run_ffmpeg(
    cmd: Sequence[str],
    timeout_sec: float,
    on_progress: ProgressSecondsCallback | None = None,
) -> None:
    if timeout_sec <= 0:
        raise FFmpegTimeoutError("任务超时")

    timed_out = threading.Event()

    # stderr 落盘，避免管道写满阻塞 ffmpeg；stdout 读取 -progress 输出
    try:
        stderr_file = tempfile.TemporaryFile(mode="w+")
    except OSError as exc:
        raise FFmpegError(f"无法创建临时文件: {exc}") from exc

    with stderr_file:
        try:
            process = subprocess.Popen(
                list(cmd),
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                text=True,
            )
        except FileNotFoundError as exc:
            raise FFmpegError(f"未找到可执行文件: {cmd[0]}") from exc
        except OSError as exc:
            raise FFmpegError(f"无法启动进程 {cmd[0]}: {exc}") from exc

        def _kill() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(timeout_sec, _kill)
        timer.daemon = True
        timer.start()

        with process:
            try:
                for line in process.stdout:
                    if on_progress is None:
                        continue
                    seconds = parse_progress_seconds(line)
                    if seconds is not None:
                        on_progress(seconds)
                returncode = process.wait()
            finally:
                timer.cancel()
                if process.poll() is None:
                    process.kill()
                    process.wait()

        # 进程已正常退出后计时器才触发的，不算超时
        if timed_out.is_set() and returncode != 0:
            raise FFmpegTimeoutError(f"ffmpeg 处理超时（{timeout_sec} 秒）")

        if returncode != 0:
            stderr_file.seek(0)
            stderr = stderr_file.read().strip()
            message = stderr.splitlines()[-1] if stderr else f"ffmpeg 执行失败 (exit {returncode})"
            raise FFmpegError(message)
