from __future__ import annotations

from pathlib import Path
from typing import Sequence

from .models import RenditionOutcome


MANIFEST_HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n\n"


class ManifestWriteError(RuntimeError):
    pass


def master_filename(job_id: str) -> str:
    return f"{job_id}_master.m3u8"


def render_master_playlist(outcomes: Sequence[RenditionOutcome]) -> str:
    lines = [MANIFEST_HEADER]
    for outcome in outcomes:
        # RESOLUTION 必须是 宽x高 像素值，播放器不识别 "720p" 这类档位名
        profile = outcome.profile
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={outcome.actual_bitrate_kbps * 1000},"
            f"RESOLUTION={profile.width}x{profile.height}\n"
        )
        lines.append(f"{outcome.playlist_file}\n")
    return "".join(lines)


def build_master_playlist(
    outcomes: Sequence[RenditionOutcome],
    output_dir: Path,
    job_id: str,
) -> str:
    if not outcomes:
        raise ValueError("至少需要一个成功的码率档位才能生成主播放列表")

    filename = master_filename(job_id)
    content = render_master_playlist(outcomes)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / filename).write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ManifestWriteError(f"主播放列表写入失败: {exc}") from exc
    return filename
