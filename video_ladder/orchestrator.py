from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .encoder import (
    RenditionEncodeError,
    RenditionTimeoutError,
    encode_rendition,
    playlist_filename,
)
from .ffmpeg_pipeline import probe_video
from .ladder import select_ladder, skipped_profiles
from .manifest import build_master_playlist
from .models import Config, ProcessingResult, QualityProfile, RenditionOutcome, SourceMetadata
from .progress import LogCallback, ProgressReporter, ProgressSink
from .thumbnails import generate_thumbnails


HLS_DIRNAME = "hls"

# 进度区间：元数据 0-10，码率档位 10-85，缩略图/主播放列表 85-95，完成 100
METADATA_DONE = 10
RENDITIONS_START = 10
RENDITIONS_END = 85
THUMBNAILS_DONE = 90
MANIFEST_DONE = 95
COMPLETE = 100


def process_video(
    job_id: str,
    input_path: Path,
    output_dir: Path,
    config: Config | None = None,
    progress_sink: ProgressSink | None = None,
    log_cb: LogCallback | None = None,
) -> ProcessingResult:
    # 探测与主清单写入失败会上抛；单档位、单张缩略图失败只会让结果变少
    config = config or Config()
    reporter = ProgressReporter(job_id, sink=progress_sink, log_cb=log_cb)
    started_at = time.monotonic()
    _log(log_cb, f"job={job_id} 开始处理: {input_path}")

    try:
        result = _process(job_id, Path(input_path), Path(output_dir), config, reporter, log_cb)
    except Exception as exc:
        _log(log_cb, f"job={job_id} 处理失败: {exc}")
        reporter.fail(f"处理失败: {exc}")
        raise

    _log(
        log_cb,
        f"job={job_id} 处理完成，成功 {len(result.renditions)} 档，"
        f"失败 {len(result.failed_renditions)} 档，缩略图 {len(result.thumbnails)} 张，"
        f"耗时 {time.monotonic() - started_at:.1f}s",
    )
    return result


def _process(
    job_id: str,
    input_path: Path,
    output_dir: Path,
    config: Config,
    reporter: ProgressReporter,
    log_cb: LogCallback | None,
) -> ProcessingResult:
    metadata = probe_video(input_path, timeout_sec=config.probe_timeout_sec)
    _log(
        log_cb,
        f"job={job_id} 元数据: {metadata.resolution}, {metadata.duration_sec:.2f}s, "
        f"{metadata.size_bytes} bytes",
    )
    reporter.emit(METADATA_DONE, "已获取视频元数据")

    hls_dir = output_dir / HLS_DIRNAME
    hls_dir.mkdir(parents=True, exist_ok=True)

    for profile in skipped_profiles(metadata, config.ladder):
        _log(log_cb, f"跳过 {profile.name}：源视频分辨率不足 ({metadata.resolution})")
    profiles = select_ladder(metadata, config.ladder, config.fallback_bitrate_kbps)

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="thumbnails") as executor:
        thumbnail_future = executor.submit(
            generate_thumbnails,
            video_path=input_path,
            output_dir=hls_dir,
            job_id=job_id,
            duration_sec=metadata.duration_sec,
            count=config.thumbnail_count,
            timeout_sec=config.thumbnail_timeout_sec,
            log_cb=log_cb,
            on_thumbnail=lambda index, count: reporter.note(f"生成缩略图 {index}/{count}..."),
        )
        outcomes = _encode_renditions(
            job_id, input_path, hls_dir, metadata, profiles, config, reporter, log_cb
        )
        thumbnails = thumbnail_future.result()

    reporter.emit(THUMBNAILS_DONE, f"缩略图生成完成 ({len(thumbnails)} 张)")

    succeeded = tuple(outcome for outcome in outcomes if outcome.succeeded)
    failed = tuple(outcome for outcome in outcomes if not outcome.succeeded)

    master_playlist: str | None = None
    if succeeded:
        master_playlist = build_master_playlist(succeeded, hls_dir, job_id)
        _log(log_cb, f"job={job_id} 主播放列表已生成，共 {len(succeeded)} 档")
        reporter.emit(MANIFEST_DONE, "主播放列表生成完成")
    else:
        _log(log_cb, f"job={job_id} 所有码率档位均失败，未生成主播放列表")

    reporter.emit(COMPLETE, "处理完成！")

    return ProcessingResult(
        job_id=job_id,
        metadata=metadata,
        renditions=succeeded,
        thumbnails=thumbnails,
        poster_file=thumbnails[0] if thumbnails else None,
        master_playlist_file=master_playlist,
        failed_renditions=failed,
    )


def _encode_renditions(
    job_id: str,
    input_path: Path,
    hls_dir: Path,
    metadata: SourceMetadata,
    profiles: list[QualityProfile],
    config: Config,
    reporter: ProgressReporter,
    log_cb: LogCallback | None,
) -> list[RenditionOutcome]:
    total = len(profiles)

    def _encode_one(index: int, profile: QualityProfile) -> RenditionOutcome:
        band_start = RENDITIONS_START + (RENDITIONS_END - RENDITIONS_START) * index / total
        band_width = (RENDITIONS_END - RENDITIONS_START) / total

        def on_percent(percent: float) -> None:
            reporter.emit(
                band_start + band_width * percent / 100,
                f"处理 {profile.name} ({percent:.1f}%)...",
            )

        _log(log_cb, f"job={job_id} 开始编码 {profile.name} ({profile.resolution})")
        try:
            outcome = encode_rendition(
                video_path=input_path,
                output_dir=hls_dir,
                job_id=job_id,
                profile=profile,
                duration_sec=metadata.duration_sec,
                timeout_sec=config.rendition_timeout_sec,
                segment_sec=config.segment_sec,
                on_percent=on_percent,
            )
        except RenditionTimeoutError as exc:
            _log(log_cb, f"job={job_id} {profile.name} 超时，已跳过: {exc}")
            return _failed_outcome(job_id, profile, exc)
        except RenditionEncodeError as exc:
            _log(log_cb, f"job={job_id} {profile.name} 失败，已跳过: {exc}")
            return _failed_outcome(job_id, profile, exc)

        _log(
            log_cb,
            f"job={job_id} {profile.name} 完成，切片 {len(outcome.segment_files)} 个",
        )
        reporter.emit(band_start + band_width, f"{profile.name} 完成")
        return outcome

    if config.rendition_workers <= 1 or total == 1:
        return [_encode_one(index, profile) for index, profile in enumerate(profiles)]

    with ThreadPoolExecutor(
        max_workers=config.rendition_workers, thread_name_prefix="renditions"
    ) as executor:
        futures = [
            executor.submit(_encode_one, index, profile)
            for index, profile in enumerate(profiles)
        ]
        # 按档位顺序收集，保证主播放列表顺序稳定
        return [future.result() for future in futures]


def _failed_outcome(job_id: str, profile: QualityProfile, exc: Exception) -> RenditionOutcome:
    return RenditionOutcome(
        profile=profile,
        playlist_file=playlist_filename(job_id, profile),
        succeeded=False,
        error=str(exc),
    )


def _log(log_cb: LogCallback | None, message: str) -> None:
    if log_cb:
        log_cb(message)
