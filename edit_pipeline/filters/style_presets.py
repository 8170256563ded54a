"""
Named style presets and the legacy CSS-style filter string translator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .filter_builders import format_number, join_filters


class StylePreset(str, Enum):
    """Closed set of looks selectable from the editor."""
    NONE = "none"
    GRAYSCALE = "grayscale"
    SEPIA = "sepia"
    VINTAGE = "vintage"
    WARM = "warm"
    COOL = "cool"
    VIVID = "vivid"
    FADE = "fade"
    DRAMATIC = "dramatic"
    NOIR = "noir"

    @classmethod
    def from_name(cls, name: str | None) -> StylePreset | None:
        if not name:
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class StyleAdjustments:
    brightness: float = 0.0
    contrast: float = 1.0
    saturation: float = 1.0
    gamma: float = 1.0
    hue_degrees: float = 0.0
    red_shift: float = 0.0
    green_shift: float = 0.0
    blue_shift: float = 0.0
    vignette: bool = False


PRESET_ADJUSTMENTS: dict[StylePreset, StyleAdjustments] = {
    StylePreset.NONE: StyleAdjustments(),
    StylePreset.GRAYSCALE: StyleAdjustments(saturation=0.0),
    StylePreset.SEPIA: StyleAdjustments(
        saturation=0.6, red_shift=0.3, green_shift=0.1, blue_shift=-0.2
    ),
    StylePreset.VINTAGE: StyleAdjustments(
        contrast=1.1, saturation=0.8, red_shift=0.1, blue_shift=-0.1, vignette=True
    ),
    StylePreset.WARM: StyleAdjustments(saturation=1.1, red_shift=0.1, blue_shift=-0.1),
    StylePreset.COOL: StyleAdjustments(red_shift=-0.1, blue_shift=0.1),
    StylePreset.VIVID: StyleAdjustments(contrast=1.1, saturation=1.5),
    StylePreset.FADE: StyleAdjustments(brightness=0.05, contrast=0.85, saturation=0.8),
    StylePreset.DRAMATIC: StyleAdjustments(
        contrast=1.4, saturation=1.2, gamma=0.9, vignette=True
    ),
    StylePreset.NOIR: StyleAdjustments(brightness=-0.05, contrast=1.5, saturation=0.0),
}


def build_style_filter(adjustments: StyleAdjustments) -> str | None:
    eq_parts: list[str] = []
    if adjustments.brightness != 0:
        eq_parts.append(f"brightness={adjustments.brightness:.2f}")
    if adjustments.contrast != 1:
        eq_parts.append(f"contrast={adjustments.contrast:.2f}")
    if adjustments.saturation != 1:
        eq_parts.append(f"saturation={adjustments.saturation:.2f}")
    if adjustments.gamma != 1:
        eq_parts.append(f"gamma={adjustments.gamma:.3f}")

    parts: list[str | None] = ["eq=" + ":".join(eq_parts) if eq_parts else None]
    if adjustments.hue_degrees:
        parts.append(f"hue=h={format_number(adjustments.hue_degrees, 2)}")
    if adjustments.red_shift or adjustments.green_shift or adjustments.blue_shift:
        parts.append(
            "colorbalance="
            f"rs={format_number(adjustments.red_shift, 3)}:"
            f"gs={format_number(adjustments.green_shift, 3)}:"
            f"bs={format_number(adjustments.blue_shift, 3)}"
        )
    if adjustments.vignette:
        parts.append("vignette=PI/5")
    return join_filters(parts)


def build_preset_filter(preset: StylePreset) -> str | None:
    return build_style_filter(PRESET_ADJUSTMENTS[preset])


# =============================================================================
# LEGACY FILTER STRINGS
# =============================================================================

_LEGACY_TERM = re.compile(
    r"(grayscale|sepia|contrast|brightness|saturate|hue-rotate)"
    r"\(\s*(-?\d*\.?\d+)\s*(%|deg)?\s*\)",
    re.IGNORECASE,
)


def _legacy_term_to_filter(name: str, value: float) -> str | None:
    if name == "grayscale":
        return f"hue=s={format_number(1 - value, 3)}"
    if name == "sepia":
        return (
            f"colorbalance=rs={format_number(value * 0.3, 3)}:"
            f"gs={format_number(value * 0.1, 3)}:"
            f"bs={format_number(-value * 0.2, 3)}"
        )
    if name == "contrast":
        return f"eq=contrast={format_number(value, 3)}"
    if name == "brightness":
        return f"eq=brightness={format_number(value - 1, 3)}"
    if name == "saturate":
        return f"eq=saturation={format_number(value, 3)}"
    if name == "hue-rotate":
        return f"hue=h={format_number(value, 2)}"
    return None


def parse_legacy_filter(text: str | None) -> list[str]:
    """
    Translate a CSS-style filter string such as
    ``"grayscale(1) contrast(1.2) hue-rotate(90deg)"`` into ffmpeg filters.

    Unrecognized terms are skipped.
    """
    if not text:
        return []

    filters: list[str] = []
    for match in _LEGACY_TERM.finditer(text):
        name = match.group(1).lower()
        value = float(match.group(2))
        if match.group(3) == "%":
            value /= 100.0
        expr = _legacy_term_to_filter(name, value)
        if expr:
            filters.append(expr)
    return filters


def resolve_style_filter(value: str | None) -> str | None:
    """Accept either a preset name or a legacy filter string."""
    preset = StylePreset.from_name(value)
    if preset is not None:
        return build_preset_filter(preset)
    return join_filters(parse_legacy_filter(value))
