from __future__ import annotations

from pathlib import Path
from typing import Callable

from .ffmpeg_pipeline import FFmpegError, FFmpegTimeoutError, run_ffmpeg
from .models import QualityProfile, RenditionOutcome


SEGMENT_EXT = "ts"
AUDIO_BITRATE = "128k"
GOP_SIZE = 48

PercentCallback = Callable[[float], None]


class RenditionEncodeError(FFmpegError):
    pass


class RenditionTimeoutError(RenditionEncodeError):
    pass


def rendition_prefix(job_id: str, profile: QualityProfile) -> str:
    return f"{job_id}_{profile.name}"


def playlist_filename(job_id: str, profile: QualityProfile) -> str:
    return f"{rendition_prefix(job_id, profile)}.m3u8"


def build_encode_command(
    video_path: Path,
    output_dir: Path,
    job_id: str,
    profile: QualityProfile,
    segment_sec: int = 10,
) -> list[str]:
    prefix = rendition_prefix(job_id, profile)
    bitrate = f"{profile.bitrate_kbps}k"
    return [
        "ffmpeg",
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-nostats",
        "-progress",
        "pipe:1",
        "-i",
        str(video_path),
        "-c:v",
        "libx264",
        "-c:a",
        "aac",
        "-s",
        profile.resolution,
        "-b:v",
        bitrate,
        "-b:a",
        AUDIO_BITRATE,
        "-maxrate",
        bitrate,
        "-bufsize",
        f"{profile.bitrate_kbps * 2}k",
        "-preset",
        "medium",
        "-crf",
        "23",
        "-profile:v",
        "main",
        "-pix_fmt",
        "yuv420p",
        "-g",
        str(GOP_SIZE),
        "-sc_threshold",
        "0",
        "-avoid_negative_ts",
        "make_zero",
        "-fflags",
        "+genpts",
        "-threads",
        "0",
        "-movflags",
        "+faststart",
        "-f",
        "hls",
        "-hls_time",
        str(segment_sec),
        "-hls_list_size",
        "0",
        "-hls_segment_filename",
        str(output_dir / f"{prefix}_%03d.{SEGMENT_EXT}"),
        str(output_dir / f"{prefix}.m3u8"),
    ]


def list_segments(output_dir: Path, job_id: str, profile: QualityProfile) -> tuple[str, ...]:
    # 切片数量取决于编码结果，只能以目录中实际写出的文件为准
    prefix = f"{rendition_prefix(job_id, profile)}_"
    suffix = f".{SEGMENT_EXT}"
    return tuple(
        sorted(
            path.name
            for path in output_dir.iterdir()
            if path.is_file()
            and path.name.startswith(prefix)
            and path.name.endswith(suffix)
            and path.name[len(prefix) : -len(suffix)].isdigit()
        )
    )


def remove_rendition_files(output_dir: Path, job_id: str, profile: QualityProfile) -> None:
    if not output_dir.is_dir():
        return
    playlist = output_dir / playlist_filename(job_id, profile)
    playlist.unlink(missing_ok=True)
    for name in list_segments(output_dir, job_id, profile):
        (output_dir / name).unlink(missing_ok=True)


def encode_rendition(
    video_path: Path,
    output_dir: Path,
    job_id: str,
    profile: QualityProfile,
    duration_sec: float,
    timeout_sec: float = 300,
    segment_sec: int = 10,
    on_percent: PercentCallback | None = None,
) -> RenditionOutcome:
    # 先清掉同名档位的旧文件，失败或超时时再清理本次的半成品
    remove_rendition_files(output_dir, job_id, profile)
    cmd = build_encode_command(video_path, output_dir, job_id, profile, segment_sec)

    def _on_seconds(seconds: float) -> None:
        if on_percent is None or duration_sec <= 0:
            return
        on_percent(min(100.0, seconds / duration_sec * 100))

    try:
        run_ffmpeg(cmd, timeout_sec=timeout_sec, on_progress=_on_seconds)
    except FFmpegTimeoutError as exc:
        remove_rendition_files(output_dir, job_id, profile)
        raise RenditionTimeoutError(f"{profile.name} 编码超时：超过 {timeout_sec} 秒") from exc
    except FFmpegError as exc:
        remove_rendition_files(output_dir, job_id, profile)
        raise RenditionEncodeError(f"{profile.name} 编码失败: {exc}") from exc

    playlist = playlist_filename(job_id, profile)
    segments = list_segments(output_dir, job_id, profile)
    if not (output_dir / playlist).is_file() or not segments:
        remove_rendition_files(output_dir, job_id, profile)
        raise RenditionEncodeError(f"{profile.name} 编码结束但未生成播放列表或切片")

    return RenditionOutcome(
        profile=profile,
        playlist_file=playlist,
        segment_files=segments,
        actual_bitrate_kbps=profile.bitrate_kbps,
        succeeded=True,
    )
