"""
Multi-stage operations built from ordered sub-encodes.

Each pipeline stages its inputs into a Workspace, runs one encode per
segment, and joins the segments with a final concat encode. Any failing
step aborts the whole operation; no partial output is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Union

from pydantic import ValidationError

from .command_builder import (
    build_concat_command,
    build_concat_list,
    build_segment_command,
    build_speed_command,
    build_still_capture_command,
    build_still_hold_command,
    build_transition_command,
    needs_retime,
)
from .errors import EngineExecError, StagingError
from .models.edit_models import ClipEdit, FreezeFrame
from .models.progress_models import ProgressStage
from .workspace import Workspace

logger = logging.getLogger(__name__)

FREEZE_POINTS_SHARE = 60.0
FREEZE_JOIN_START = 70.0
SPEED_CLIPS_SHARE = 70.0
SPEED_JOIN_START = 75.0
JOIN_END = 95.0


def coerce_freeze_frames(items: Iterable[Union[FreezeFrame, Mapping]]) -> list[FreezeFrame]:
    try:
        return [
            item if isinstance(item, FreezeFrame) else FreezeFrame.model_validate(item)
            for item in items
        ]
    except ValidationError as exc:
        raise StagingError(f"Invalid freeze frame: {exc.errors()[0]['msg']}") from exc


def coerce_clip_edits(items: Iterable[Union[ClipEdit, Mapping]]) -> list[ClipEdit]:
    try:
        return [
            item if isinstance(item, ClipEdit) else ClipEdit.model_validate(item)
            for item in items
        ]
    except ValidationError as exc:
        raise StagingError(f"Invalid clip edit: {exc.errors()[0]['msg']}") from exc


# =============================================================================
# SPLIT
# =============================================================================


async def split_video(ws: Workspace, data: bytes, split_time: float) -> tuple[bytes, bytes]:
    if split_time is None or split_time <= 0:
        raise StagingError(f"Split time must be positive, got {split_time}")

    ws.reporter.emit(ProgressStage.PROCESSING, 0, "Preparing split...")
    source = await ws.stage("input.mp4", data)

    duration = await ws.engine.probe_duration(source)
    if duration is not None and split_time >= duration:
        raise StagingError(
            f"Split time {split_time}s is beyond the clip duration ({duration:.2f}s)"
        )

    first = ws.name("part1.mp4")
    second = ws.name("part2.mp4")
    await ws.run(
        build_segment_command(source, first, duration=split_time),
        20, 60, "Encoding first part...",
    )
    await ws.run(
        build_segment_command(source, second, start=split_time),
        60, JOIN_END, "Encoding second part...",
    )
    return await ws.read(first), await ws.read(second)


# =============================================================================
# TRANSITION
# =============================================================================


async def apply_transition(
    ws: Workspace,
    clip_a: bytes,
    clip_b: bytes,
    transition: str | None,
    duration: float,
    clip1_duration: float,
) -> bytes:
    ws.reporter.emit(ProgressStage.PROCESSING, 0, "Preparing transition...")
    first = await ws.stage("clip_a.mp4", clip_a)
    second = await ws.stage("clip_b.mp4", clip_b)
    audio = (
        await ws.engine.probe_has_audio(first) is not False,
        await ws.engine.probe_has_audio(second) is not False,
    )
    output = ws.name("output.mp4")
    await ws.run(
        build_transition_command(
            first, second, transition, duration, clip1_duration, output, audio
        ),
        10, JOIN_END, "Applying transition...",
    )
    return await ws.read(output)


# =============================================================================
# FREEZE FRAMES
# =============================================================================


@dataclass(frozen=True)
class FreezeStep:
    """
    One planned segment: a source cut, or a held still of one freeze point.

    ``point_index`` is the freeze point a step belongs to; the tail cut
    after the last point has none.
    """

    kind: str
    start: float
    duration: float | None = None
    point_index: int | None = None

    @property
    def is_hold(self) -> bool:
        return self.kind == "hold"


def plan_freeze_segments(freeze_frames: list[FreezeFrame]) -> list[FreezeStep]:
    """
    Walk the timeline in ascending freeze-point order.

    Each point contributes the source cut since the previous point (when
    non-empty) followed by its hold. A final open-ended cut covers the tail.
    Points at the same instant are kept and held back to back.
    """
    ordered = sorted(freeze_frames, key=lambda frame: frame.time)
    steps: list[FreezeStep] = []
    prev_end = 0.0
    for idx, frame in enumerate(ordered):
        if frame.time > prev_end:
            steps.append(FreezeStep("cut", prev_end, frame.time - prev_end, idx))
        steps.append(FreezeStep("hold", frame.time, frame.duration, idx))
        prev_end = frame.time
    steps.append(FreezeStep("cut", prev_end, None))
    return steps


async def insert_freeze_frames(
    ws: Workspace, data: bytes, freeze_frames: list[FreezeFrame]
) -> bytes:
    if not freeze_frames:
        raise StagingError("No freeze frames supplied")

    ws.reporter.emit(ProgressStage.PROCESSING, 0, "Preparing freeze frames...")
    source = await ws.stage("input.mp4", data)

    steps = plan_freeze_segments(freeze_frames)
    point_count = len(freeze_frames)
    per_point = FREEZE_POINTS_SHARE / point_count
    segments: list[str] = []

    third = per_point / 3
    for seg_idx, step in enumerate(steps):
        if step.point_index is None:
            lo, hi = FREEZE_POINTS_SHARE, FREEZE_JOIN_START
            message = "Cutting tail segment..."
        else:
            lo = step.point_index * per_point
            hi = lo + per_point
            message = f"Freeze {step.point_index + 1}/{point_count}..."

        if step.is_hold:
            frame = ws.name(f"frame_{step.point_index}.jpg")
            await ws.run(
                build_still_capture_command(source, step.start, frame),
                lo + third, lo + 2 * third, message, ProgressStage.PROCESSING,
            )
            held = ws.name(f"freeze_{step.point_index}.mp4")
            await ws.run(
                build_still_hold_command(frame, step.duration, held),
                lo + 2 * third, hi, message, ProgressStage.PROCESSING,
            )
            segments.append(held)
        else:
            segment = ws.name(f"seg_{seg_idx}.mp4")
            end = hi if step.point_index is None else lo + third
            await ws.run(
                build_segment_command(
                    source, segment, start=step.start, duration=step.duration, match_holds=True
                ),
                lo, end, message, ProgressStage.PROCESSING,
            )
            segments.append(segment)

    return await _join(ws, segments, FREEZE_JOIN_START, "Joining segments...")


# =============================================================================
# PER-CLIP SPEED
# =============================================================================


async def process_clip_speeds(
    ws: Workspace, data: bytes, clip_edits: list[ClipEdit]
) -> bytes:
    if not clip_edits:
        raise StagingError("No clips supplied")

    ws.reporter.emit(ProgressStage.PROCESSING, 0, "Processing clip speeds...")
    source = await ws.stage("input.mp4", data)

    per_clip = SPEED_CLIPS_SHARE / len(clip_edits)
    segments: list[str] = []
    for idx, clip in enumerate(clip_edits):
        lo = idx * per_clip
        hi = lo + per_clip
        message = f"Clip {idx + 1}/{len(clip_edits)}..."
        cut = ws.name(f"clip_{idx}.mp4")
        if needs_retime(clip.speed):
            mid = lo + per_clip / 2
            await ws.run(
                build_segment_command(source, cut, start=clip.start_time, duration=clip.duration),
                lo, mid, message, ProgressStage.PROCESSING,
            )
            retimed = ws.name(f"clip_out_{idx}.mp4")
            await ws.run(
                build_speed_command(cut, clip.speed, retimed),
                mid, hi, message, ProgressStage.PROCESSING,
            )
            segments.append(retimed)
        else:
            await ws.run(
                build_segment_command(source, cut, start=clip.start_time, duration=clip.duration),
                lo, hi, message, ProgressStage.PROCESSING,
            )
            segments.append(cut)

    return await _join(ws, segments, SPEED_JOIN_START, "Joining clips...")


# =============================================================================
# MERGE / CONSTANT SPEED
# =============================================================================


async def merge_clips(ws: Workspace, clips: list[bytes]) -> bytes:
    if not clips:
        raise StagingError("No clips to merge")

    ws.reporter.emit(ProgressStage.PROCESSING, 0, "Preparing clips...")
    names = []
    for idx, clip in enumerate(clips):
        names.append(await ws.stage(f"merge_{idx}.mp4", clip))
        ws.reporter.emit(
            ProgressStage.PROCESSING, (idx + 1) / len(clips) * 40, "Preparing clips..."
        )
    return await _join(ws, names, 50, "Merging clips...", reencode=False)


async def apply_speed(ws: Workspace, data: bytes, speed: float) -> bytes:
    if speed is None or speed <= 0:
        raise StagingError(f"Speed must be positive, got {speed}")

    ws.reporter.emit(ProgressStage.PROCESSING, 0, "Preparing speed change...")
    source = await ws.stage("input.mp4", data)
    output = ws.name("output.mp4")
    try:
        await ws.run(build_speed_command(source, speed, output), 10, JOIN_END, "Changing speed...")
    except EngineExecError as exc:
        logger.warning(
            "Speed change with audio failed (code %s), retrying without audio",
            exc.returncode,
        )
        await ws.run(
            build_speed_command(source, speed, output, include_audio=False),
            10, JOIN_END, "Changing speed...",
        )
    return await ws.read(output)


async def _join(
    ws: Workspace,
    segments: list[str],
    start: float,
    message: str,
    reencode: bool = True,
) -> bytes:
    list_name = await ws.stage("concat.txt", build_concat_list(segments))
    output = ws.name("output.mp4")
    await ws.run(
        build_concat_command(list_name, output, reencode=reencode),
        start, JOIN_END, message,
    )
    return await ws.read(output)
