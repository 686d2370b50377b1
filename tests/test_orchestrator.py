from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

from video_ladder import encoder, orchestrator, thumbnails
from video_ladder.ffmpeg_pipeline import FFmpegError, FFmpegTimeoutError, ProbeError
from video_ladder.manifest import ManifestWriteError
from video_ladder.models import Config, SourceMetadata
from video_ladder.orchestrator import process_video
from video_ladder.progress import ProgressEvent


_real_extract_thumbnail = thumbnails.extract_thumbnail


def _fake_probe(width: int, height: int, duration: float = 30.0):
    def probe(video_path, timeout_sec=60):
        return SourceMetadata(duration_sec=duration, width=width, height=height, size_bytes=4096)

    return probe


def _fake_run_ffmpeg(failing: dict[str, Exception] | None = None):
    failing = failing or {}

    def run(cmd, timeout_sec, on_progress=None):
        playlist = Path(cmd[-1])
        for label, exc in failing.items():
            if playlist.name.endswith(f"_{label}.m3u8"):
                raise exc
        if on_progress:
            on_progress(15.0)
        pattern = cmd[cmd.index("-hls_segment_filename") + 1]
        for index in range(3):
            Path(pattern.replace("%03d", f"{index:03d}")).write_bytes(b"ts")
        playlist.write_text("#EXTM3U\n", encoding="utf-8")

    return run


def _fake_extract(video_path, output_path, timestamp_sec, size, timeout_sec):
    output_path.write_bytes(b"jpg")


@pytest.fixture
def fake_media(monkeypatch: pytest.MonkeyPatch):
    def install(width=1920, height=1080, failing=None):
        monkeypatch.setattr(orchestrator, "probe_video", _fake_probe(width, height))
        monkeypatch.setattr(encoder, "run_ffmpeg", _fake_run_ffmpeg(failing))
        monkeypatch.setattr(thumbnails, "extract_thumbnail", _fake_extract)

    return install


def test_full_hd_source_produces_four_renditions(tmp_path: Path, fake_media) -> None:
    fake_media()
    events: list[ProgressEvent] = []

    result = process_video(
        "job", tmp_path / "in.mp4", tmp_path / "out", Config(rendition_timeout_sec=120), events.append
    )

    assert [r.profile.name for r in result.renditions] == ["360p", "480p", "720p", "1080p"]
    assert result.failed_renditions == ()
    assert result.master_playlist_file == "job_master.m3u8"
    assert len(result.thumbnails) == 5
    assert result.poster_file == "job_thumb_1.jpg"
    assert result.status == "ready"

    master = (tmp_path / "out" / "hls" / "job_master.m3u8").read_text(encoding="utf-8")
    assert master.count("#EXT-X-STREAM-INF") == 4
    assert "BANDWIDTH=5000000,RESOLUTION=1920x1080" in master


def test_timed_out_tier_is_dropped_and_job_still_succeeds(tmp_path: Path, fake_media) -> None:
    fake_media(failing={"720p": FFmpegTimeoutError("ffmpeg 处理超时")})
    logs: list[str] = []

    result = process_video(
        "job", tmp_path / "in.mp4", tmp_path / "out", Config(), log_cb=logs.append
    )

    assert [r.profile.name for r in result.renditions] == ["360p", "480p", "1080p"]
    assert [r.profile.name for r in result.failed_renditions] == ["720p"]
    assert not result.failed_renditions[0].succeeded
    assert result.status == "ready"

    master = (tmp_path / "out" / "hls" / "job_master.m3u8").read_text(encoding="utf-8")
    assert master.count("#EXT-X-STREAM-INF") == 3
    assert "1280x720" not in master
    assert any("720p" in line and "超时" in line for line in logs)
    assert not list((tmp_path / "out" / "hls").glob("job_720p*"))


def test_small_source_gets_one_original_rendition(tmp_path: Path, fake_media) -> None:
    fake_media(width=320, height=180)

    result = process_video("job", tmp_path / "in.mp4", tmp_path / "out")

    assert len(result.renditions) == 1
    rendition = result.renditions[0]
    assert rendition.profile.name == "original"
    assert (rendition.profile.width, rendition.profile.height) == (320, 180)
    assert rendition.playlist_file == "job_original.m3u8"


def test_odd_sized_small_source_encodes_at_even_size(
    tmp_path: Path, fake_media, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_media(width=321, height=181)
    commands: list[list[str]] = []
    run = encoder.run_ffmpeg

    def recording_run(cmd, timeout_sec, on_progress=None):
        commands.append(list(cmd))
        run(cmd, timeout_sec, on_progress)

    monkeypatch.setattr(encoder, "run_ffmpeg", recording_run)

    result = process_video("job", tmp_path / "in.mp4", tmp_path / "out")

    assert [r.profile.resolution for r in result.renditions] == ["320x180"]
    assert commands[0][commands[0].index("-s") + 1] == "320x180"


def test_thumbnail_os_error_does_not_abort_job(
    tmp_path: Path, fake_media, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_media()
    monkeypatch.setattr(thumbnails, "extract_thumbnail", _real_extract_thumbnail)
    real_popen = subprocess.Popen

    # 第 2 张缩略图启动进程时报权限错误，其余由子进程写出文件
    def flaky_popen(cmd, **kwargs):
        output = cmd[-1]
        if output.endswith("job_thumb_2.jpg"):
            raise PermissionError(13, "Permission denied")
        code = f"open({output!r}, 'wb').write(b'jpg')"
        return real_popen([sys.executable, "-c", code], **kwargs)

    monkeypatch.setattr(subprocess, "Popen", flaky_popen)
    logs: list[str] = []

    result = process_video("job", tmp_path / "in.mp4", tmp_path / "out", log_cb=logs.append)

    assert len(result.renditions) == 4
    assert result.thumbnails == (
        "job_thumb_1.jpg",
        "job_thumb_3.jpg",
        "job_thumb_4.jpg",
        "job_thumb_5.jpg",
    )
    assert result.status == "ready"
    assert any("缩略图 2/5" in line for line in logs)


def test_all_renditions_failing_returns_empty_result(tmp_path: Path, fake_media) -> None:
    error = FFmpegError("encoder crashed")
    fake_media(failing={name: error for name in ["360p", "480p", "720p", "1080p"]})

    result = process_video("job", tmp_path / "in.mp4", tmp_path / "out")

    assert result.renditions == ()
    assert result.master_playlist_file is None
    assert result.status == "error"
    assert len(result.thumbnails) == 5
    assert not (tmp_path / "out" / "hls" / "job_master.m3u8").exists()


def test_progress_is_monotonic_and_ends_at_100(tmp_path: Path, fake_media) -> None:
    fake_media(failing={"480p": FFmpegError("boom")})
    events: list[ProgressEvent] = []

    process_video("job", tmp_path / "in.mp4", tmp_path / "out", progress_sink=events.append)

    percents = [event.percent for event in events]
    assert percents == sorted(percents)
    assert percents[0] == 10
    assert percents[-1] == 100
    assert all(event.job_id == "job" for event in events)
    assert any("缩略图" in event.message for event in events)


def test_parallel_renditions_keep_ladder_order(tmp_path: Path, fake_media) -> None:
    fake_media()

    result = process_video(
        "job", tmp_path / "in.mp4", tmp_path / "out", Config(rendition_workers=4)
    )

    assert [r.profile.name for r in result.renditions] == ["360p", "480p", "720p", "1080p"]


def test_rerun_produces_identical_manifest(tmp_path: Path, fake_media) -> None:
    fake_media()
    output_dir = tmp_path / "out"

    process_video("job", tmp_path / "in.mp4", output_dir)
    first = (output_dir / "hls" / "job_master.m3u8").read_text(encoding="utf-8")
    process_video("job", tmp_path / "in.mp4", output_dir)
    second = (output_dir / "hls" / "job_master.m3u8").read_text(encoding="utf-8")

    assert first == second


def test_probe_failure_propagates_without_writing_files(tmp_path: Path) -> None:
    corrupt = tmp_path / "corrupt.mp4"
    corrupt.write_bytes(b"\x00\x01 not a video")
    output_dir = tmp_path / "out"
    events: list[ProgressEvent] = []

    with pytest.raises(ProbeError):
        process_video("job", corrupt, output_dir, progress_sink=events.append)

    assert not output_dir.exists()
    assert events[-1].percent == -1


def test_manifest_write_failure_propagates(
    tmp_path: Path, fake_media, monkeypatch: pytest.MonkeyPatch
) -> None:
    fake_media()

    def broken_manifest(outcomes, output_dir, job_id):
        raise ManifestWriteError("disk full")

    monkeypatch.setattr(orchestrator, "build_master_playlist", broken_manifest)
    events: list[ProgressEvent] = []

    with pytest.raises(ManifestWriteError):
        process_video("job", tmp_path / "in.mp4", tmp_path / "out", progress_sink=events.append)

    assert events[-1].percent == -1
    assert "disk full" in events[-1].message
