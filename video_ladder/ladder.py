from __future__ import annotations

from typing import Iterable

from .models import QualityProfile, SourceMetadata


ORIGINAL_PROFILE_NAME = "original"
DEFAULT_FALLBACK_BITRATE_KBPS = 500


def select_ladder(
    source: SourceMetadata,
    ladder: Iterable[QualityProfile],
    fallback_bitrate_kbps: int = DEFAULT_FALLBACK_BITRATE_KBPS,
) -> list[QualityProfile]:
    selected = [
        profile
        for profile in ladder
        if profile.width <= source.width and profile.height <= source.height
    ]
    if selected:
        return selected

    # 源分辨率低于最小档位时，按原始分辨率单独输出一档；
    # yuv420p 要求宽高为偶数，奇数边向下取偶
    return [
        QualityProfile(
            name=ORIGINAL_PROFILE_NAME,
            width=_even_floor(source.width),
            height=_even_floor(source.height),
            bitrate_kbps=fallback_bitrate_kbps,
        )
    ]


def _even_floor(value: int) -> int:
    return max(value - value % 2, 2)


def skipped_profiles(
    source: SourceMetadata,
    ladder: Iterable[QualityProfile],
) -> list[QualityProfile]:
    return [
        profile
        for profile in ladder
        if profile.width > source.width or profile.height > source.height
    ]
