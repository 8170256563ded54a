"""
Pydantic models describing a declarative edit request.

This module defines the structures handed to the pipeline by callers:
- EditDescription and its nested settings blocks (tone, crop, transform, mask, ...)
- Overlay content (texts, stickers) rendered to one raster before encoding
- ClipEdit and FreezeFrame for the multi-stage operations

Field names are snake_case with camelCase aliases, so payloads produced by the
editor UI (``trimStart``, ``musicUrl``, ``flipH``) validate without translation.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


_ASPECT_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*:\s*(\d+(?:\.\d+)?)\s*$")


class EditModel(BaseModel):
    """Base for all edit structures: camelCase aliases, immutable once built."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# COLOR / GEOMETRY SETTINGS
# =============================================================================


class TuneSettings(EditModel):
    """Tone adjustments. Neutral values produce no filter stage."""

    brightness: float = Field(default=0.0, ge=-1.0, le=1.0, description="Additive")
    contrast: float = Field(default=1.0, ge=0.0, le=4.0, description="Multiplicative around 1.0")
    saturation: float = Field(default=1.0, ge=0.0, le=4.0, description="Multiplicative around 1.0")
    exposure: float = Field(default=0.0, ge=-4.0, le=4.0, description="Stops, mapped to gamma 2^exposure")

    @property
    def is_neutral(self) -> bool:
        return (
            self.brightness == 0
            and self.contrast == 1
            and self.saturation == 1
            and self.exposure == 0
        )


class CropSettings(EditModel):
    """
    Crop either by a normalized rectangle or by a target aspect ratio.

    When ``aspect`` is set the rectangle fields are ignored and a centered
    crop that fits the source frame is computed instead.
    """

    x: float = Field(default=0.0, ge=0.0, le=1.0)
    y: float = Field(default=0.0, ge=0.0, le=1.0)
    width: float = Field(default=1.0, gt=0.0, le=1.0)
    height: float = Field(default=1.0, gt=0.0, le=1.0)
    aspect: str | None = Field(default=None, description="Target ratio such as '9:16' or '1:1'")

    @field_validator("aspect")
    @classmethod
    def _validate_aspect(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        match = _ASPECT_PATTERN.match(value)
        if not match or float(match.group(1)) <= 0 or float(match.group(2)) <= 0:
            raise ValueError(f"Invalid aspect ratio: {value!r}")
        return value.strip()

    def aspect_ratio(self) -> tuple[float, float] | None:
        if not self.aspect:
            return None
        match = _ASPECT_PATTERN.match(self.aspect)
        if not match:
            return None
        return float(match.group(1)), float(match.group(2))


class TransformSettings(EditModel):
    rotation: int = Field(default=0, description="Clockwise rotation: 0, 90, 180 or 270")
    flip_h: bool = False
    flip_v: bool = False

    @field_validator("rotation")
    @classmethod
    def _validate_rotation(cls, value: int) -> int:
        normalized = int(value) % 360
        if normalized not in {0, 90, 180, 270}:
            raise ValueError(f"Rotation must be a multiple of 90, got {value}")
        return normalized


class MaskSettings(EditModel):
    shape: str | None = Field(default=None, description="circle, rectangle, diamond; others fall back to a vignette")
    feather: float = Field(default=0.0, ge=0.0)
    invert: bool = False


# =============================================================================
# BOOLEAN-GATED EFFECT BLOCKS
# =============================================================================


class StabilizationSettings(EditModel):
    enabled: bool = True
    strength: float = Field(default=0.5, ge=0.0, le=1.0)


class GreenScreenSettings(EditModel):
    enabled: bool = True
    color: str = "#00ff00"
    similarity: float = Field(default=0.15, ge=0.01, le=1.0)
    blend: float = Field(default=0.0, ge=0.0, le=1.0)


class CutoutSettings(EditModel):
    enabled: bool = True
    color: str = "#ffffff"
    similarity: float = Field(default=0.3, ge=0.01, le=1.0)
    blend: float = Field(default=0.1, ge=0.0, le=1.0)


class SpeedKeyframe(EditModel):
    time: float = Field(ge=0.0, description="Source time in seconds")
    speed: float = Field(gt=0.0)


# =============================================================================
# OVERLAY CONTENT
# =============================================================================


class TextGradient(EditModel):
    start_color: str = "#ffffff"
    end_color: str = "#ffffff"
    angle: float = 0.0


class TextOverlay(EditModel):
    """
    A text layer. ``x``/``y`` are the layer center in percent of the output
    frame; ``font_size`` is in display pixels and is rescaled by
    ``video_height / display_height`` when rendered.
    """

    text: str
    x: float = Field(default=50.0, ge=0.0, le=100.0)
    y: float = Field(default=50.0, ge=0.0, le=100.0)
    color: str = "#ffffff"
    font_size: float = Field(default=32.0, gt=0.0)
    font_family: str | None = None
    bold: bool = False
    align: str = "center"
    background_color: str | None = None
    outline_color: str | None = None
    outline_width: float = Field(default=0.0, ge=0.0)
    rotation: float = 0.0
    scale: float = Field(default=1.0, gt=0.0)
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    gradient: TextGradient | None = None


class StickerOverlay(EditModel):
    """An emoji or image sticker; one of ``emoji`` / ``image_url`` must be set."""

    emoji: str | None = None
    image_url: str | None = None
    x: float = Field(default=50.0, ge=0.0, le=100.0)
    y: float = Field(default=50.0, ge=0.0, le=100.0)
    size: float = Field(default=64.0, gt=0.0, description="Display pixels")
    rotation: float = 0.0
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _require_content(self) -> StickerOverlay:
        if not self.emoji and not self.image_url:
            raise ValueError("Sticker needs an emoji or an image_url")
        return self


# =============================================================================
# EDIT DESCRIPTION
# =============================================================================


def _coerce_flag_block(value: Any) -> Any:
    if isinstance(value, bool):
        return {"enabled": value} if value else None
    return value


class EditDescription(EditModel):
    """The full declarative edit request for one single-pass encode."""

    trim_start: float | None = Field(default=None, ge=0.0)
    trim_end: float | None = Field(default=None, gt=0.0)

    filter: str | None = Field(default=None, description="Style preset name or legacy CSS-style filter string")
    tune: TuneSettings | None = None
    blur: float | None = Field(default=None, ge=0.0)
    crop: CropSettings | None = None
    transform: TransformSettings | None = None
    opacity: float | None = Field(default=None, ge=0.0, le=1.0)
    mask: MaskSettings | None = None

    stabilization: StabilizationSettings | None = None
    green_screen: GreenScreenSettings | None = None
    cutout: CutoutSettings | None = None

    speed_ramp: list[SpeedKeyframe] = Field(default_factory=list)

    voice_effect: str | None = None
    volume: float | None = Field(default=None, ge=0.0)
    music_url: str | None = None
    music_volume: float | None = Field(default=None, ge=0.0)

    texts: list[TextOverlay] = Field(default_factory=list)
    stickers: list[StickerOverlay] = Field(default_factory=list)
    drawing_data_url: str | None = None

    video_width: int | None = Field(default=None, gt=0)
    video_height: int | None = Field(default=None, gt=0)
    display_height: float | None = Field(default=None, gt=0)

    @field_validator("stabilization", "green_screen", "cutout", mode="before")
    @classmethod
    def _accept_boolean_flags(cls, value: Any) -> Any:
        return _coerce_flag_block(value)

    @model_validator(mode="after")
    def _validate_trim_range(self) -> EditDescription:
        if self.trim_start is not None and self.trim_end is not None:
            if self.trim_end <= self.trim_start:
                raise ValueError(
                    f"trim_end ({self.trim_end}) must be greater than trim_start ({self.trim_start})"
                )
        return self

    @property
    def has_dimensions(self) -> bool:
        return bool(self.video_width and self.video_height)

    @property
    def has_overlay_content(self) -> bool:
        return bool(self.texts or self.stickers or self.drawing_data_url)

    @property
    def effective_volume(self) -> float:
        return 1.0 if self.volume is None else self.volume

    @property
    def effective_music_volume(self) -> float:
        return 1.0 if self.music_volume is None else self.music_volume


# =============================================================================
# MULTI-STAGE INPUTS
# =============================================================================


class ClipEdit(EditModel):
    """One source range of a per-clip speed retiming operation."""

    start_time: float = Field(ge=0.0)
    end_time: float = Field(gt=0.0)
    speed: float = Field(default=1.0, gt=0.0)

    @model_validator(mode="after")
    def _validate_range(self) -> ClipEdit:
        if self.start_time >= self.end_time:
            raise ValueError(
                f"start_time ({self.start_time}) must be before end_time ({self.end_time})"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class FreezeFrame(EditModel):
    """Hold the frame at ``time`` as a still for ``duration`` seconds."""

    time: float = Field(ge=0.0)
    duration: float = Field(gt=0.0)
