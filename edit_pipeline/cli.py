from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import requests

from .config import PipelineConfig
from .models.progress_models import ProcessingProgress
from .processor import VideoProcessor

logger = logging.getLogger("edit-pipeline")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _freeze_point(value: str) -> dict[str, float]:
    try:
        time_raw, duration_raw = value.split(":", 1)
        return {"time": float(time_raw), "duration": float(duration_raw)}
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected TIME:DURATION, got {value!r}") from exc


def _clip_edit(value: str) -> dict[str, float]:
    parts = value.split(":")
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(f"Expected START:END[:SPEED], got {value!r}")
    try:
        numbers = [float(part) for part in parts]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected START:END[:SPEED], got {value!r}") from exc
    clip = {"start_time": numbers[0], "end_time": numbers[1]}
    if len(numbers) == 3:
        clip["speed"] = numbers[2]
    return clip


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edit-pipeline", description="Compile video edits and run them through ffmpeg"
    )
    parser.add_argument("--env-file", type=Path, help="Path to a .env file")
    parser.add_argument(
        "--callback-url",
        default=os.environ.get("CALLBACK_URL"),
        help="POST progress events to this URL",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Apply an edit description in one encode")
    process.add_argument("input")
    process.add_argument("output", type=Path)
    process.add_argument("--edits", type=Path, required=True, help="Edit description JSON file")

    split = sub.add_parser("split", help="Split a clip in two at a time")
    split.add_argument("input")
    split.add_argument("first", type=Path)
    split.add_argument("second", type=Path)
    split.add_argument("--at", type=float, required=True, dest="split_time")

    transition = sub.add_parser("transition", help="Join two clips with a transition")
    transition.add_argument("clip_a")
    transition.add_argument("clip_b")
    transition.add_argument("output", type=Path)
    transition.add_argument("--type", default="crossfade", dest="transition")
    transition.add_argument("--duration", type=float, default=1.0)
    transition.add_argument(
        "--clip1-duration",
        type=float,
        help="Duration of the first clip; probed when omitted",
    )

    freeze = sub.add_parser("freeze", help="Insert freeze frames")
    freeze.add_argument("input")
    freeze.add_argument("output", type=Path)
    freeze.add_argument(
        "--at", type=_freeze_point, action="append", required=True,
        dest="freeze_frames", metavar="TIME:DURATION",
    )

    speeds = sub.add_parser("speeds", help="Cut clips and retime each one")
    speeds.add_argument("input")
    speeds.add_argument("output", type=Path)
    speeds.add_argument(
        "--clip", type=_clip_edit, action="append", required=True,
        dest="clip_edits", metavar="START:END[:SPEED]",
    )

    speed = sub.add_parser("speed", help="Change the speed of a whole clip")
    speed.add_argument("input")
    speed.add_argument("output", type=Path)
    speed.add_argument("--speed", type=float, required=True)

    merge = sub.add_parser("merge", help="Concatenate clips without re-encoding")
    merge.add_argument("output", type=Path)
    merge.add_argument("clips", nargs="+")

    thumbnail = sub.add_parser("thumbnail", help="Grab one JPEG frame")
    thumbnail.add_argument("input")
    thumbnail.add_argument("output", type=Path)
    thumbnail.add_argument("--time", type=float, default=0.0)
    thumbnail.add_argument("--width", type=int, default=320)

    audio = sub.add_parser("extract-audio", help="Extract the soundtrack as MP3")
    audio.add_argument("input")
    audio.add_argument("output", type=Path)

    duration = sub.add_parser("duration", help="Print the clip duration in seconds")
    duration.add_argument("input")

    return parser


def make_progress_reporter(callback_url: str | None, command: str):
    def on_progress(event: ProcessingProgress) -> None:
        logger.info("[%s] %s %.0f%% %s", command, event.stage.value, event.percent, event.message)
        if not callback_url:
            return
        try:
            response = requests.post(
                callback_url,
                json={"command": command, **event.model_dump(mode="json")},
                timeout=10,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to report progress: %s", exc)

    return on_progress


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("Wrote %s (%d bytes)", path, len(data))


async def run_command(args: argparse.Namespace, processor: VideoProcessor) -> int:
    on_progress = make_progress_reporter(args.callback_url, args.command)
    command = args.command

    if command == "process":
        edits: dict[str, Any] = json.loads(args.edits.read_text(encoding="utf-8"))
        result = await processor.process_video(args.input, edits, on_progress)
        outputs = [(args.output, result)]
    elif command == "split":
        parts = await processor.split_video(args.input, args.split_time, on_progress)
        outputs = [(args.first, parts[0]), (args.second, parts[1])] if parts else [(args.first, None)]
    elif command == "transition":
        clip1_duration = args.clip1_duration
        if clip1_duration is None:
            clip1_duration = await processor.get_video_duration(args.clip_a)
            if clip1_duration is None:
                logger.error("Could not determine duration of %s", args.clip_a)
                return 1
        result = await processor.apply_transition(
            args.clip_a, args.clip_b, args.transition, args.duration, clip1_duration, on_progress
        )
        outputs = [(args.output, result)]
    elif command == "freeze":
        result = await processor.insert_freeze_frames(args.input, args.freeze_frames, on_progress)
        outputs = [(args.output, result)]
    elif command == "speeds":
        result = await processor.process_clip_speeds(args.input, args.clip_edits, on_progress)
        outputs = [(args.output, result)]
    elif command == "speed":
        result = await processor.apply_speed(args.input, args.speed, on_progress)
        outputs = [(args.output, result)]
    elif command == "merge":
        result = await processor.merge_clips(args.clips, on_progress)
        outputs = [(args.output, result)]
    elif command == "thumbnail":
        result = await processor.generate_thumbnail(args.input, args.time, args.width, on_progress)
        outputs = [(args.output, result)]
    elif command == "extract-audio":
        result = await processor.extract_audio(args.input, on_progress)
        outputs = [(args.output, result)]
    elif command == "duration":
        value = await processor.get_video_duration(args.input)
        if value is None:
            logger.error("Could not determine duration of %s", args.input)
            return 1
        print(f"{value:.3f}")
        return 0
    else:
        raise ValueError(f"Unknown command: {command}")

    if any(data is None for _, data in outputs):
        logger.error("%s failed", command)
        return 1
    for path, data in outputs:
        _write(path, data)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = PipelineConfig.from_env(args.env_file)
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    processor = VideoProcessor(config=config)

    async def _run() -> int:
        try:
            return await run_command(args, processor)
        finally:
            await processor.handle.close()

    try:
        return asyncio.run(_run())
    except Exception as exc:
        logger.exception("Unexpected error: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
