from .filter_builders import (
    CropRect,
    SpeedFilters,
    build_blur_filter,
    build_crop_filter,
    build_cutout_filter,
    build_green_screen_filter,
    build_mask_filter,
    build_opacity_filter,
    build_speed_filters,
    build_stabilization_filter,
    build_tempo_factors,
    build_transform_filter,
    build_tune_filter,
    compute_crop_rect,
    estimate_speed_ramp_factor,
    format_number,
    join_filters,
    rotated_dimensions,
)
from .style_presets import (
    StyleAdjustments,
    StylePreset,
    build_preset_filter,
    parse_legacy_filter,
    resolve_style_filter,
)
from .transitions import build_transition_graph, map_transition, transition_offset
from .voice_effects import VoiceEffect, build_voice_filter

__all__ = [
    "CropRect",
    "SpeedFilters",
    "StyleAdjustments",
    "StylePreset",
    "VoiceEffect",
    "build_blur_filter",
    "build_crop_filter",
    "build_cutout_filter",
    "build_green_screen_filter",
    "build_mask_filter",
    "build_opacity_filter",
    "build_preset_filter",
    "build_speed_filters",
    "build_stabilization_filter",
    "build_tempo_factors",
    "build_transform_filter",
    "build_transition_graph",
    "build_tune_filter",
    "build_voice_filter",
    "compute_crop_rect",
    "estimate_speed_ramp_factor",
    "format_number",
    "join_filters",
    "map_transition",
    "parse_legacy_filter",
    "resolve_style_filter",
    "rotated_dimensions",
    "transition_offset",
]
