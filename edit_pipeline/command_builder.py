"""
Assembles complete ffmpeg argument lists.

``build_process_command`` compiles an EditDescription into one encode,
choosing between three shapes:

- trim only: stream copy with range arguments, no filters
- simple: one ``-vf`` chain and one ``-af`` chain over a single input
- graph: ``-filter_complex`` over source + overlay image and/or music,
  with explicitly labelled and mapped ``[vout]`` / ``[aout]`` outputs

The remaining builders produce the fixed per-step commands used by the
multi-stage pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .filters.filter_builders import (
    build_blur_filter,
    build_crop_filter,
    build_cutout_filter,
    build_green_screen_filter,
    build_mask_filter,
    build_opacity_filter,
    build_speed_filters,
    build_stabilization_filter,
    build_transform_filter,
    build_tune_filter,
    compute_crop_rect,
    estimate_speed_ramp_factor,
    format_number,
    join_filters,
    rotated_dimensions,
)
from .filters.style_presets import resolve_style_filter
from .filters.transitions import SILENT_AUDIO_SOURCE, build_transition_graph
from .filters.voice_effects import build_voice_filter
from .models.edit_models import EditDescription

VIDEO_CODEC_ARGS = ["-c:v", "libx264", "-preset", "fast", "-crf", "23"]
AUDIO_CODEC_ARGS = ["-c:a", "aac", "-b:a", "128k"]
FASTSTART_ARGS = ["-movflags", "+faststart"]
ENCODE_ARGS = [*VIDEO_CODEC_ARGS, *AUDIO_CODEC_ARGS, *FASTSTART_ARGS]
STREAM_COPY_ARGS = ["-c", "copy", "-avoid_negative_ts", "make_zero", *FASTSTART_ARGS]

HOLD_FRAME_RATE = "30"
HOLD_SAMPLE_RATE = "44100"
HOLD_STREAM_ARGS = ["-r", HOLD_FRAME_RATE, "-ar", HOLD_SAMPLE_RATE, "-ac", "2"]
SPEED_EPSILON = 0.01


@dataclass
class InputSpec:
    path: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class StagedInputs:
    """Names of the files staged for one single-pass encode."""

    source: str
    output: str
    overlay: str | None = None
    music: str | None = None
    source_has_audio: bool = True

    @property
    def uses_graph(self) -> bool:
        return bool(self.overlay or self.music)


# =============================================================================
# SINGLE-PASS EDIT COMPILATION
# =============================================================================


def build_trim_options(edits: EditDescription) -> list[str]:
    options: list[str] = []
    start = edits.trim_start or 0.0
    if start > 0:
        options.extend(["-ss", format_number(start, 3)])
    if edits.trim_end is not None:
        options.extend(["-t", format_number(edits.trim_end - start, 3)])
    return options


def effective_speed(edits: EditDescription) -> float:
    if not edits.speed_ramp:
        return 1.0
    return estimate_speed_ramp_factor(edits.speed_ramp)


def output_dimensions(edits: EditDescription) -> tuple[int, int] | None:
    """Frame size after crop and rotation, when the source size is known."""
    if not edits.has_dimensions:
        return None
    width, height = edits.video_width, edits.video_height
    rect = compute_crop_rect(edits.crop, width, height)
    if rect is not None:
        width, height = rect.width, rect.height
    return rotated_dimensions(edits.transform, width, height)


def build_video_chain(edits: EditDescription) -> str | None:
    dims = output_dimensions(edits)
    mask_w, mask_h = dims if dims else (None, None)
    return join_filters(
        [
            build_stabilization_filter(edits.stabilization),
            build_crop_filter(edits.crop, edits.video_width, edits.video_height),
            build_transform_filter(edits.transform),
            build_green_screen_filter(edits.green_screen),
            build_cutout_filter(edits.cutout),
            resolve_style_filter(edits.filter),
            build_tune_filter(edits.tune),
            build_blur_filter(edits.blur),
            build_opacity_filter(edits.opacity),
            build_mask_filter(edits.mask, mask_w, mask_h),
            build_speed_filters(effective_speed(edits)).video,
        ]
    )


def build_audio_chain(edits: EditDescription) -> str | None:
    volume = None
    if edits.volume is not None and edits.volume != 1.0:
        volume = f"volume={format_number(edits.volume, 3)}"
    return join_filters(
        [
            build_speed_filters(effective_speed(edits)).audio_chain,
            build_voice_filter(edits.voice_effect),
            volume,
        ]
    )


def _build_filter_graph(
    edits: EditDescription,
    inputs: StagedInputs,
    video_chain: str | None,
    audio_chain: str | None,
) -> tuple[str, bool, bool]:
    """Return the graph, whether ``-shortest`` is needed and whether ``[aout]`` exists."""
    parts: list[str] = []
    next_index = 1

    if inputs.overlay:
        overlay_index = next_index
        next_index += 1
        base = "0:v"
        if video_chain:
            parts.append(f"[0:v]{video_chain}[vbase]")
            base = "vbase"
        parts.append(f"[{base}][{overlay_index}:v]overlay=0:0[vout]")
    else:
        parts.append(f"[0:v]{video_chain or 'null'}[vout]")

    if inputs.music:
        music_index = next_index
        music_volume = format_number(edits.effective_music_volume, 3)
        if edits.effective_volume == 0 or not inputs.source_has_audio:
            # Original audio muted or absent: the music track becomes the only audio.
            parts.append(f"[{music_index}:a]volume={music_volume}[aout]")
            return ";".join(parts), True, True
        parts.append(f"[0:a]{audio_chain or 'anull'}[aorig]")
        parts.append(f"[{music_index}:a]volume={music_volume}[amusic]")
        parts.append(
            "[aorig][amusic]amix=inputs=2:duration=first:dropout_transition=0[aout]"
        )
    elif inputs.source_has_audio:
        parts.append(f"[0:a]{audio_chain or 'anull'}[aout]")
    else:
        return ";".join(parts), False, False

    return ";".join(parts), False, True


def build_process_command(edits: EditDescription, inputs: StagedInputs) -> list[str]:
    source = InputSpec(inputs.source, build_trim_options(edits))
    video_chain = build_video_chain(edits)
    audio_chain = build_audio_chain(edits) if inputs.source_has_audio else None

    if inputs.uses_graph:
        cmd = source.to_args()
        if inputs.overlay:
            cmd.extend(InputSpec(inputs.overlay).to_args())
        if inputs.music:
            cmd.extend(InputSpec(inputs.music).to_args())
        graph, shortest, has_audio = _build_filter_graph(edits, inputs, video_chain, audio_chain)
        cmd.extend(["-filter_complex", graph, "-map", "[vout]"])
        if has_audio:
            cmd.extend(["-map", "[aout]", *ENCODE_ARGS])
        else:
            cmd.extend([*VIDEO_CODEC_ARGS, *FASTSTART_ARGS])
        if shortest:
            cmd.append("-shortest")
        cmd.append(inputs.output)
        return cmd

    if not video_chain and not audio_chain:
        return [*source.to_args(), *STREAM_COPY_ARGS, inputs.output]

    cmd = source.to_args()
    if video_chain:
        cmd.extend(["-vf", video_chain])
    if audio_chain:
        cmd.extend(["-af", audio_chain])
    cmd.extend(ENCODE_ARGS)
    cmd.append(inputs.output)
    return cmd


# =============================================================================
# MULTI-STAGE STEPS
# =============================================================================


def build_segment_command(
    source: str,
    output: str,
    start: float | None = None,
    duration: float | None = None,
    match_holds: bool = False,
) -> list[str]:
    """
    Re-encode ``[start, start + duration)`` of ``source``; open ends run to the edge.

    ``match_holds`` conforms the cut to the still-hold stream format so the
    concat demuxer sees one frame rate and one audio layout across the join.
    """
    cmd = ["-i", source]
    if start is not None and start > 0:
        cmd.extend(["-ss", format_number(start, 3)])
    if duration is not None:
        cmd.extend(["-t", format_number(duration, 3)])
    if match_holds:
        cmd.extend(HOLD_STREAM_ARGS)
    return [*cmd, *ENCODE_ARGS, output]


def build_still_capture_command(source: str, time: float, output: str) -> list[str]:
    return [
        "-i", source,
        "-ss", format_number(time, 3),
        "-vframes", "1",
        "-q:v", "2",
        output,
    ]


def build_still_hold_command(image: str, duration: float, output: str) -> list[str]:
    seconds = format_number(duration, 3)
    return [
        "-loop", "1", "-i", image,
        "-f", "lavfi", "-i", SILENT_AUDIO_SOURCE,
        "-t", seconds,
        "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2",
        "-r", HOLD_FRAME_RATE,
        "-pix_fmt", "yuv420p",
        *ENCODE_ARGS,
        "-shortest",
        output,
    ]


def build_concat_list(names: list[str]) -> bytes:
    return "\n".join(f"file '{name}'" for name in names).encode("utf-8")


def build_concat_command(list_name: str, output: str, reencode: bool = True) -> list[str]:
    cmd = ["-f", "concat", "-safe", "0", "-i", list_name]
    if reencode:
        cmd.extend(ENCODE_ARGS)
    else:
        cmd.extend(["-c", "copy", *FASTSTART_ARGS])
    cmd.append(output)
    return cmd


def build_speed_command(
    source: str, speed: float, output: str, include_audio: bool = True
) -> list[str]:
    filters = build_speed_filters(speed)
    cmd = ["-i", source]
    if filters.video:
        cmd.extend(["-filter:v", filters.video])
    if include_audio:
        if filters.audio_chain:
            cmd.extend(["-filter:a", filters.audio_chain])
        cmd.extend([*VIDEO_CODEC_ARGS, *AUDIO_CODEC_ARGS])
    else:
        cmd.extend(["-an", *VIDEO_CODEC_ARGS])
    return [*cmd, *FASTSTART_ARGS, output]


def needs_retime(speed: float) -> bool:
    return abs(speed - 1.0) > SPEED_EPSILON


def build_transition_command(
    clip_a: str,
    clip_b: str,
    transition: str | None,
    duration: float,
    clip1_duration: float,
    output: str,
    audio: tuple[bool, bool] = (True, True),
) -> list[str]:
    graph = build_transition_graph(transition, duration, clip1_duration, audio)
    cmd = ["-i", clip_a, "-i", clip_b, "-filter_complex", graph, "-map", "[vout]"]
    if not any(audio):
        return [*cmd, *VIDEO_CODEC_ARGS, *FASTSTART_ARGS, output]
    cmd.extend(["-map", "[aout]", *ENCODE_ARGS])
    if not audio[1]:
        # The stand-in silence for the second clip is unbounded.
        cmd.append("-shortest")
    return [*cmd, output]


def build_thumbnail_command(source: str, time: float, width: int, output: str) -> list[str]:
    return [
        "-i", source,
        "-ss", format_number(max(0.0, time), 3),
        "-vframes", "1",
        "-vf", f"scale={int(width)}:-1",
        "-f", "image2",
        output,
    ]


def build_extract_audio_command(source: str, output: str) -> list[str]:
    return [
        "-i", source,
        "-vn",
        "-acodec", "libmp3lame",
        "-ab", "192k",
        "-ar", "44100",
        output,
    ]
