from __future__ import annotations

from .filter_builders import format_number

DEFAULT_TRANSITION = "fade"

TRANSITION_TYPES: dict[str, str] = {
    "crossfade": "fade",
    "slide-left": "slideleft",
    "slide-right": "slideright",
    "slide-up": "slideup",
    "slide-down": "slidedown",
    "zoom-in": "zoomin",
    "zoom-out": "circleopen",
    "dissolve": "dissolve",
    "wipe": "wipeleft",
    "spin": "radial",
    "glitch": "pixelize",
    "flash": "fadewhite",
    "fade-black": "fadeblack",
}

# Native xfade names are accepted as-is.
XFADE_TRANSITIONS = frozenset(
    {
        "fade",
        "fadeblack",
        "fadewhite",
        "dissolve",
        "wipeleft",
        "wiperight",
        "wipeup",
        "wipedown",
        "slideleft",
        "slideright",
        "slideup",
        "slidedown",
        "circleopen",
        "circleclose",
        "circlecrop",
        "rectcrop",
        "radial",
        "pixelize",
        "zoomin",
        "smoothleft",
        "smoothright",
        "smoothup",
        "smoothdown",
    }
)

VIDEO_NORMALIZE = "settb=AVTB,fps=30,format=yuv420p,setsar=1"
AUDIO_NORMALIZE = "aformat=sample_rates=44100:channel_layouts=stereo"
SILENT_AUDIO_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=44100"


def map_transition(name: str | None) -> str:
    key = (name or "").strip().lower()
    if key in TRANSITION_TYPES:
        return TRANSITION_TYPES[key]
    if key in XFADE_TRANSITIONS:
        return key
    return DEFAULT_TRANSITION


def transition_offset(clip1_duration: float, transition_duration: float) -> float:
    return max(0.0, clip1_duration - transition_duration)


def _audio_input(index: int, has_audio: bool, clip_duration: float | None) -> str:
    if has_audio:
        return f"[{index}:a]{AUDIO_NORMALIZE}[a{index}]"
    # Silent stand-in, bounded when the clip length is known.
    if clip_duration:
        return f"{SILENT_AUDIO_SOURCE},atrim=duration={format_number(clip_duration, 3)}[a{index}]"
    return f"{SILENT_AUDIO_SOURCE}[a{index}]"


def build_transition_graph(
    name: str | None,
    duration: float,
    clip1_duration: float,
    audio: tuple[bool, bool] = (True, True),
) -> str:
    """
    Filter graph joining input 0 and input 1 with a video blend and a
    matching audio cross-fade, labelled ``[vout]`` / ``[aout]``.

    A non-positive duration joins the clips back to back instead. A clip
    without an audio stream is paired with generated silence; when neither
    has one the graph carries video only and has no ``[aout]``.
    """
    with_audio = any(audio)
    parts = [
        f"[0:v]{VIDEO_NORMALIZE}[v0]",
        f"[1:v]{VIDEO_NORMALIZE}[v1]",
    ]
    if with_audio:
        parts.append(_audio_input(0, audio[0], clip1_duration))
        parts.append(_audio_input(1, audio[1], None))

    if duration is None or duration <= 0:
        if with_audio:
            parts.append("[v0][a0][v1][a1]concat=n=2:v=1:a=1[vout][aout]")
        else:
            parts.append("[v0][v1]concat=n=2:v=1:a=0[vout]")
        return ";".join(parts)

    transition = map_transition(name)
    offset = transition_offset(clip1_duration, duration)
    dur = format_number(duration, 3)
    parts.append(
        f"[v0][v1]xfade=transition={transition}:duration={dur}:"
        f"offset={format_number(offset, 3)}[vout]"
    )
    if with_audio:
        parts.append(f"[a0][a1]acrossfade=d={dur}[aout]")
    return ";".join(parts)
