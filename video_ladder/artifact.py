from __future__ import annotations

import csv
import io
import zipfile
from pathlib import Path

from .models import JobOutcome, ProcessingResult
from .orchestrator import HLS_DIRNAME


def to_processed_files(result: ProcessingResult) -> dict:
    variants = [
        {
            "resolution": outcome.profile.name,
            "width": outcome.profile.width,
            "height": outcome.profile.height,
            "bitrate": outcome.actual_bitrate_kbps,
            "playlist": outcome.playlist_file,
            "segments": list(outcome.segment_files),
        }
        for outcome in result.renditions
    ]
    return {
        "status": result.status,
        "duration": result.metadata.duration_sec,
        "resolution": result.metadata.resolution,
        "fileSize": result.metadata.size_bytes,
        "processedFiles": {
            "hls": {
                "masterPlaylist": result.master_playlist_file,
                "variants": variants,
                "segments": result.segment_files,
            },
            "thumbnails": list(result.thumbnails),
            "poster": result.poster_file,
        },
    }


def build_result_csv(outcomes: list[JobOutcome]) -> bytes:
    ordered = sorted(outcomes, key=lambda item: item.job_id)

    sio = io.StringIO(newline="")
    writer = csv.writer(sio)
    writer.writerow(["job_id", "status", "renditions", "error", "duration_sec"])

    for outcome in ordered:
        renditions = ""
        if outcome.result is not None:
            renditions = "|".join(item.profile.name for item in outcome.result.renditions)
        writer.writerow(
            [
                outcome.job_id,
                outcome.status,
                renditions,
                outcome.error,
                f"{outcome.duration_sec:.3f}",
            ]
        )

    return sio.getvalue().encode("utf-8-sig")


def result_files(result: ProcessingResult) -> list[str]:
    names: list[str] = []
    if result.master_playlist_file:
        names.append(result.master_playlist_file)
    for outcome in result.renditions:
        names.append(outcome.playlist_file)
        names.extend(outcome.segment_files)
    names.extend(result.thumbnails)
    return names


def build_download_artifact(result: ProcessingResult, output_dir: Path) -> tuple[str, str, bytes]:
    hls_dir = output_dir / HLS_DIRNAME

    zip_buffer = io.BytesIO()
    with zipfile.ZipFile(zip_buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name in result_files(result):
            path = hls_dir / name
            if not path.is_file():
                continue
            archive.writestr(f"{HLS_DIRNAME}/{name}", path.read_bytes())

    return "application/zip", f"{result.job_id}_hls.zip", zip_buffer.getvalue()
