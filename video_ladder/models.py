from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


Status = Literal["ready", "error"]


@dataclass(frozen=True)
class QualityProfile:
    name: str
    width: int
    height: int
    bitrate_kbps: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


DEFAULT_LADDER: tuple[QualityProfile, ...] = (
    QualityProfile(name="360p", width=640, height=360, bitrate_kbps=500),
    QualityProfile(name="480p", width=854, height=480, bitrate_kbps=1000),
    QualityProfile(name="720p", width=1280, height=720, bitrate_kbps=2500),
    QualityProfile(name="1080p", width=1920, height=1080, bitrate_kbps=5000),
)


@dataclass(frozen=True)
class Config:
    ladder: tuple[QualityProfile, ...] = DEFAULT_LADDER
    rendition_timeout_sec: int = 300
    thumbnail_timeout_sec: int = 60
    probe_timeout_sec: int = 60
    segment_sec: int = 10
    thumbnail_count: int = 5
    max_concurrent_jobs: int = 2
    rendition_workers: int = 1
    max_video_mb: int = 2048
    download_retries: int = 2
    download_timeout_sec: int = 600
    fallback_bitrate_kbps: int = 500


@dataclass(frozen=True)
class SourceMetadata:
    duration_sec: float
    width: int
    height: int
    size_bytes: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class RenditionOutcome:
    profile: QualityProfile
    playlist_file: str
    segment_files: tuple[str, ...] = ()
    actual_bitrate_kbps: int = 0
    succeeded: bool = False
    error: str = ""


@dataclass(frozen=True)
class ProcessingResult:
    job_id: str
    metadata: SourceMetadata
    renditions: tuple[RenditionOutcome, ...]
    thumbnails: tuple[str, ...]
    poster_file: str | None
    master_playlist_file: str | None
    failed_renditions: tuple[RenditionOutcome, ...] = ()

    @property
    def status(self) -> Status:
        return "ready" if self.renditions else "error"

    @property
    def segment_files(self) -> list[str]:
        segments: list[str] = []
        for outcome in self.renditions:
            segments.extend(outcome.segment_files)
        return segments


@dataclass(frozen=True)
class JobRequest:
    job_id: str
    source: str
    output_dir: Path


@dataclass
class JobOutcome:
    job_id: str
    status: Status
    error: str
    duration_sec: float
    result: ProcessingResult | None = None


@dataclass(frozen=True)
class QueueStatus:
    queue_length: int
    processing: list[str] = field(default_factory=list)
    active_jobs: int = 0
    max_concurrent: int = 1
