"""
Pure builders that turn one edit concern into an ffmpeg filter expression.

Every builder returns ``None`` (or an empty result) when its settings are
absent or neutral, so callers can chain the results without special cases.
None of them raise for out-of-range input or touch the filesystem.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable

from ..models.edit_models import (
    CropSettings,
    CutoutSettings,
    GreenScreenSettings,
    MaskSettings,
    SpeedKeyframe,
    StabilizationSettings,
    TransformSettings,
    TuneSettings,
)

MAX_BLUR_RADIUS = 50.0
MIN_TEMPO = 0.5
MAX_TEMPO = 2.0

CIRCLE_RADIUS_RATIO = 0.4
RECTANGLE_EXTENT_RATIO = 0.35

ROTATION_FILTERS = {
    0: [],
    90: ["transpose=1"],
    180: ["transpose=1", "transpose=1"],
    270: ["transpose=2"],
}


def format_number(value: float, decimals: int = 6) -> str:
    """Fixed-precision formatting with trailing zeros stripped (2.0 -> '2')."""
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    if text in {"-0", ""}:
        return "0"
    return text


def join_filters(parts: Iterable[str | None]) -> str | None:
    chain = [part for part in parts if part]
    if not chain:
        return None
    return ",".join(chain)


def _even_floor(value: float) -> int:
    rounded = int(value)
    return rounded - rounded % 2


# =============================================================================
# COLOR
# =============================================================================


def build_tune_filter(tune: TuneSettings | None) -> str | None:
    if tune is None or tune.is_neutral:
        return None

    parts: list[str] = []
    if tune.brightness != 0:
        parts.append(f"brightness={tune.brightness:.2f}")
    if tune.contrast != 1:
        parts.append(f"contrast={tune.contrast:.2f}")
    if tune.saturation != 1:
        parts.append(f"saturation={tune.saturation:.2f}")
    if tune.exposure != 0:
        parts.append(f"gamma={2 ** tune.exposure:.3f}")
    return "eq=" + ":".join(parts)


def build_blur_filter(radius: float | None) -> str | None:
    if radius is None or radius <= 0:
        return None
    clamped = min(float(radius), MAX_BLUR_RADIUS)
    return f"boxblur={format_number(clamped, 2)}:1"


def build_opacity_filter(opacity: float | None) -> str | None:
    # The output container has no alpha channel; fade the picture toward black.
    if opacity is None or opacity >= 1:
        return None
    alpha = max(0.0, float(opacity))
    return f"colorchannelmixer=rr={alpha:.3f}:gg={alpha:.3f}:bb={alpha:.3f}"


# =============================================================================
# GEOMETRY
# =============================================================================


@dataclass(frozen=True)
class CropRect:
    width: int
    height: int
    x: int
    y: int

    def to_filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


def compute_crop_rect(
    crop: CropSettings | None, width: int | None, height: int | None
) -> CropRect | None:
    """
    Resolve crop settings against a ``width`` x ``height`` source frame.

    Aspect mode fits the largest centered rectangle of the requested ratio
    inside the frame. Free mode scales the normalized rectangle by the frame
    size. Output dimensions are always rounded down to even integers.
    """
    if crop is None or not width or not height:
        return None

    ratio = crop.aspect_ratio()
    if ratio is not None:
        target_aspect = ratio[0] / ratio[1]
        video_aspect = width / height
        if target_aspect > video_aspect:
            out_w = width
            out_h = round(width / target_aspect)
        else:
            out_h = height
            out_w = round(height * target_aspect)
        out_w = max(2, _even_floor(min(out_w, width)))
        out_h = max(2, _even_floor(min(out_h, height)))
        return CropRect(out_w, out_h, (width - out_w) // 2, (height - out_h) // 2)

    if crop.width >= 1 and crop.height >= 1:
        return None

    out_w = max(2, _even_floor(min(crop.width * width, width)))
    out_h = max(2, _even_floor(min(crop.height * height, height)))
    x = min(max(0, round(crop.x * width)), max(0, width - out_w))
    y = min(max(0, round(crop.y * height)), max(0, height - out_h))
    return CropRect(out_w, out_h, x, y)


def build_crop_filter(
    crop: CropSettings | None, width: int | None, height: int | None
) -> str | None:
    rect = compute_crop_rect(crop, width, height)
    return rect.to_filter() if rect else None


def build_transform_filter(transform: TransformSettings | None) -> str | None:
    if transform is None:
        return None
    parts = list(ROTATION_FILTERS.get(transform.rotation, []))
    if transform.flip_h:
        parts.append("hflip")
    if transform.flip_v:
        parts.append("vflip")
    return join_filters(parts)


def rotated_dimensions(
    transform: TransformSettings | None, width: int, height: int
) -> tuple[int, int]:
    if transform is not None and transform.rotation in (90, 270):
        return height, width
    return width, height


def _mask_inclusion_expr(shape: str, width: int | None, height: int | None) -> str | None:
    # Normalized plane coordinates keep the test valid on any plane size.
    fw = str(width) if width else "W"
    fh = str(height) if height else "H"
    dx = f"(X/W-0.5)*{fw}"
    dy = f"(Y/H-0.5)*{fh}"
    if width and height:
        radius = format_number(CIRCLE_RADIUS_RATIO * min(width, height), 3)
    else:
        radius = f"{CIRCLE_RADIUS_RATIO}*min(W,H)"

    if shape == "circle":
        return f"lte(hypot({dx},{dy}),{radius})"
    if shape == "rectangle":
        extent = RECTANGLE_EXTENT_RATIO
        return f"lte(abs(X/W-0.5),{extent})*lte(abs(Y/H-0.5),{extent})"
    if shape == "diamond":
        return f"lte(abs({dx})+abs({dy}),{radius})"
    return None


def build_mask_filter(
    mask: MaskSettings | None, width: int | None = None, height: int | None = None
) -> str | None:
    """
    Multiply the frame by an analytic shape matte.

    Supported shapes are rendered into a matte, feathered with a gaussian
    blur and blended into the picture; anything else becomes a vignette.
    """
    if mask is None or not mask.shape:
        return None

    shape = mask.shape.strip().lower()
    inclusion = _mask_inclusion_expr(shape, width, height)
    if inclusion is None:
        mode = ":mode=backward" if mask.invert else ""
        return f"vignette=PI/4{mode}"

    if mask.invert:
        inclusion = f"1-{inclusion}"
    matte = f"255*({inclusion})"
    sigma = format_number(mask.feather if mask.feather > 0 else 1.0, 2)
    return (
        "format=gbrp,split[mask_src][mask_in];"
        f"[mask_in]geq=r='{matte}':g='{matte}':b='{matte}',gblur=sigma={sigma}[mask_matte];"
        "[mask_src][mask_matte]blend=all_expr='A*B/255',format=yuv420p"
    )


# =============================================================================
# EFFECT BLOCKS
# =============================================================================


def _format_key_color(color: str) -> str:
    value = color.strip()
    if value.startswith("#"):
        return "0x" + value[1:]
    return value


def build_stabilization_filter(settings: StabilizationSettings | None) -> str | None:
    if settings is None or not settings.enabled:
        return None
    radius = max(2, int(20 * settings.strength))
    return f"deshake=rx={radius}:ry={radius}:edge=mirror"


def build_green_screen_filter(settings: GreenScreenSettings | None) -> str | None:
    if settings is None or not settings.enabled:
        return None
    color = _format_key_color(settings.color)
    return (
        f"chromakey={color}:{settings.similarity:.3f}:{settings.blend:.3f},"
        "premultiply=inplace=1"
    )


def build_cutout_filter(settings: CutoutSettings | None) -> str | None:
    if settings is None or not settings.enabled:
        return None
    color = _format_key_color(settings.color)
    return (
        f"colorkey={color}:{settings.similarity:.3f}:{settings.blend:.3f},"
        "premultiply=inplace=1"
    )


# =============================================================================
# SPEED
# =============================================================================


@dataclass
class SpeedFilters:
    video: str | None = None
    audio: list[str] = field(default_factory=list)

    @property
    def audio_chain(self) -> str | None:
        return join_filters(self.audio)

    @property
    def is_identity(self) -> bool:
        return self.video is None and not self.audio


def build_tempo_factors(speed: float) -> list[float]:
    """Split ``speed`` into tempo multipliers that each lie within [0.5, 2.0]."""
    if speed is None or speed <= 0 or not math.isfinite(speed):
        return []

    factors: list[float] = []
    remainder = float(speed)
    while remainder < MIN_TEMPO or remainder > MAX_TEMPO:
        if remainder > MAX_TEMPO:
            factors.append(MAX_TEMPO)
            remainder /= MAX_TEMPO
        else:
            factors.append(MIN_TEMPO)
            remainder /= MIN_TEMPO
    if remainder != 1.0:
        factors.append(remainder)
    return factors


def build_speed_filters(speed: float | None) -> SpeedFilters:
    if speed is None or speed <= 0 or speed == 1.0 or not math.isfinite(speed):
        return SpeedFilters()
    return SpeedFilters(
        video=f"setpts={format_number(1.0 / speed)}*PTS",
        audio=[f"atempo={format_number(factor)}" for factor in build_tempo_factors(speed)],
    )


def estimate_speed_ramp_factor(keyframes: list[SpeedKeyframe]) -> float:
    """
    Collapse a speed ramp to one constant factor.

    The result is the time-weighted average over keyframe intervals
    (total source time over total output time). The last keyframe has no
    interval of its own, so a single keyframe returns its own speed.
    """
    if not keyframes:
        return 1.0

    points = sorted((max(0.0, kf.time), max(0.01, kf.speed)) for kf in keyframes)
    total_input = 0.0
    total_output = 0.0
    for idx, (start_t, speed) in enumerate(points[:-1]):
        interval = max(0.0, points[idx + 1][0] - start_t)
        total_input += interval
        total_output += interval / speed

    if total_input <= 0 or total_output <= 0:
        return points[-1][1]
    return max(0.01, total_input / total_output)
