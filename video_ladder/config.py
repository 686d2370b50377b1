from __future__ import annotations

import os
import shutil
from io import BytesIO
from pathlib import Path

import pandas as pd

from .models import DEFAULT_LADDER, Config, QualityProfile


REQUIRED_LADDER_COLUMNS = ("name", "width", "height", "bitrate_kbps")


class LadderConfigError(ValueError):
    pass


def _read_positive_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_config() -> Config:
    ladder_path = os.getenv("VL_LADDER_PATH")
    ladder = load_ladder(Path(ladder_path).expanduser()) if ladder_path else DEFAULT_LADDER
    return Config(
        ladder=ladder,
        rendition_timeout_sec=_read_positive_int("VL_RENDITION_TIMEOUT_SEC", 300),
        thumbnail_timeout_sec=_read_positive_int("VL_THUMBNAIL_TIMEOUT_SEC", 60),
        probe_timeout_sec=_read_positive_int("VL_PROBE_TIMEOUT_SEC", 60),
        segment_sec=_read_positive_int("VL_SEGMENT_SEC", 10),
        thumbnail_count=min(_read_positive_int("VL_THUMBNAIL_COUNT", 5), 5),
        max_concurrent_jobs=_read_positive_int("VL_MAX_JOBS", 2),
        rendition_workers=_read_positive_int("VL_RENDITION_WORKERS", 1),
        max_video_mb=_read_positive_int("VL_MAX_VIDEO_MB", 2048),
        download_retries=_read_positive_int("VL_DOWNLOAD_RETRIES", 2),
        download_timeout_sec=_read_positive_int("VL_DOWNLOAD_TIMEOUT_SEC", 600),
    )


def load_ladder(path: Path) -> tuple[QualityProfile, ...]:
    if not path.is_file():
        raise LadderConfigError(f"码率档位文件不存在: {path}")
    return parse_ladder(path.name, path.read_bytes())


def parse_ladder(file_name: str, payload: bytes) -> tuple[QualityProfile, ...]:
    suffix = Path(file_name).suffix.lower()
    try:
        if suffix in {".xlsx", ".xlsm"}:
            df = pd.read_excel(BytesIO(payload), dtype=object)
        elif suffix in {"", ".csv"}:
            df = pd.read_csv(BytesIO(payload), dtype=object, encoding="utf-8-sig")
        else:
            raise LadderConfigError(f"不支持的文件类型: {file_name}")
    except LadderConfigError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise LadderConfigError(f"码率档位文件解析失败: {exc}") from exc

    normalized_headers = {_normalize_header(col): col for col in df.columns}
    missing = [col for col in REQUIRED_LADDER_COLUMNS if col not in normalized_headers]
    if missing:
        raise LadderConfigError(f"码率档位文件缺少必需列: {','.join(REQUIRED_LADDER_COLUMNS)}")

    columns = [normalized_headers[col] for col in REQUIRED_LADDER_COLUMNS]
    profiles: list[QualityProfile] = []
    seen: set[str] = set()

    for line_no, row in enumerate(df[columns].itertuples(index=False, name=None), start=2):
        name = _to_text(row[0])
        if not name:
            raise LadderConfigError(f"第 {line_no} 行: name 不能为空")
        if name in seen:
            raise LadderConfigError(f"第 {line_no} 行: 档位名称重复 {name}")
        seen.add(name)

        width, height, bitrate = (_to_positive_int(value) for value in row[1:])
        if not (width and height and bitrate):
            raise LadderConfigError(f"第 {line_no} 行: width/height/bitrate_kbps 必须为正整数")

        profiles.append(
            QualityProfile(name=name, width=width, height=height, bitrate_kbps=bitrate)
        )

    if not profiles:
        raise LadderConfigError("码率档位文件为空")

    return tuple(sorted(profiles, key=lambda p: (p.height, p.width, p.bitrate_kbps)))


def validate_runtime(config: Config) -> list[str]:
    errors: list[str] = []
    if not config.ladder:
        errors.append("码率档位配置为空")
    if shutil.which("ffmpeg") is None:
        errors.append("未找到 ffmpeg 可执行文件")
    if shutil.which("ffprobe") is None:
        errors.append("未找到 ffprobe 可执行文件")
    return errors


def _normalize_header(value: object) -> str:
    return "".join(str(value).strip().lower().split())


def _to_text(value: object) -> str:
    if value is None:
        return ""
    if pd.isna(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _to_positive_int(value: object) -> int:
    text = _to_text(value)
    try:
        number = float(text)
    except ValueError:
        return 0
    if not number.is_integer() or number <= 0:
        return 0
    return int(number)
