from .artifact import build_download_artifact, build_result_csv, to_processed_files
from .config import LadderConfigError, load_config, load_ladder, validate_runtime
from .encoder import RenditionEncodeError, RenditionTimeoutError, encode_rendition
from .ffmpeg_pipeline import FFmpegError, ProbeError, probe_video
from .job_queue import JobQueue
from .ladder import select_ladder
from .manifest import ManifestWriteError, build_master_playlist
from .models import (
    DEFAULT_LADDER,
    Config,
    JobOutcome,
    ProcessingResult,
    QualityProfile,
    RenditionOutcome,
    SourceMetadata,
)
from .orchestrator import process_video
from .progress import ProgressEvent, ProgressReporter, QueueProgressSink
from .thumbnails import ThumbnailError, generate_thumbnails

__all__ = [
    "DEFAULT_LADDER",
    "Config",
    "FFmpegError",
    "JobOutcome",
    "JobQueue",
    "LadderConfigError",
    "ManifestWriteError",
    "ProbeError",
    "ProcessingResult",
    "ProgressEvent",
    "ProgressReporter",
    "QualityProfile",
    "QueueProgressSink",
    "RenditionEncodeError",
    "RenditionOutcome",
    "RenditionTimeoutError",
    "SourceMetadata",
    "ThumbnailError",
    "build_download_artifact",
    "build_master_playlist",
    "build_result_csv",
    "encode_rendition",
    "generate_thumbnails",
    "load_config",
    "load_ladder",
    "process_video",
    "probe_video",
    "select_ladder",
    "to_processed_files",
    "validate_runtime",
]
