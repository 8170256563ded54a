"""
Public operation surface of the edit pipeline.

Every coroutine on VideoProcessor returns its result or ``None``. Failures
never propagate to the caller: they are logged, reported as one final
``error`` progress event and turned into ``None``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from pydantic import ValidationError

from . import pipelines
from .command_builder import (
    StagedInputs,
    build_extract_audio_command,
    build_process_command,
    build_thumbnail_command,
    output_dimensions,
)
from .config import PipelineConfig
from .engine import EngineHandle, FFmpegEngine
from .errors import EngineExecError, StagingError
from .models.edit_models import ClipEdit, EditDescription, FreezeFrame
from .models.progress_models import (
    CleanupOutcome,
    ProgressCallback,
    ProgressReporter,
    ProgressStage,
)
from .overlay_renderer import OverlayRenderer
from .sources import MediaSource, SourceResolver
from .workspace import Workspace

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ERROR_MESSAGE = 200


def _short_message(operation: str, exc: Exception) -> str:
    detail = (str(exc).strip().splitlines() or [type(exc).__name__])[0]
    text = f"{operation} failed: {detail}"
    if len(text) > MAX_ERROR_MESSAGE:
        return text[: MAX_ERROR_MESSAGE - 3] + "..."
    return text


def coerce_edits(edits: Union[EditDescription, Mapping[str, Any], None]) -> EditDescription:
    if isinstance(edits, EditDescription):
        return edits
    try:
        return EditDescription.model_validate(edits or {})
    except ValidationError as exc:
        raise StagingError(f"Invalid edit description: {exc.errors()[0]['msg']}") from exc


class VideoProcessor:
    def __init__(
        self,
        handle: EngineHandle | None = None,
        config: PipelineConfig | None = None,
        resolver: SourceResolver | None = None,
    ):
        self.config = config or PipelineConfig()
        self.handle = handle or EngineHandle(FFmpegEngine(self.config))
        self.resolver = resolver or SourceResolver(self.config)
        self.last_cleanup: CleanupOutcome | None = None

    async def _run(
        self,
        operation: str,
        kind: str,
        reporter: ProgressReporter,
        work: Callable[[Workspace], Awaitable[T]],
        success_message: str,
    ) -> Optional[T]:
        try:
            async with self.handle.exclusive() as engine:
                await self.handle.ensure_ready(reporter)
                ws = Workspace(engine, reporter, kind)
                try:
                    result = await work(ws)
                finally:
                    self.last_cleanup = await ws.cleanup()
        except Exception as exc:
            logger.exception("%s failed", operation)
            reporter.fail(_short_message(operation, exc))
            return None

        reporter.complete(success_message)
        return result

    async def _passthrough(
        self, operation: str, source: MediaSource, reporter: ProgressReporter, message: str
    ) -> bytes | None:
        try:
            data = await self.resolver.read(source)
        except Exception as exc:
            logger.exception("%s failed", operation)
            reporter.fail(_short_message(operation, exc))
            return None
        reporter.complete(message)
        return data

    # =========================================================================
    # SINGLE PASS
    # =========================================================================

    async def process_video(
        self,
        source: MediaSource,
        edits: Union[EditDescription, Mapping[str, Any]],
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> bytes:
            return await self._process(ws, source, coerce_edits(edits))

        return await self._run("Video processing", "edit", reporter, work, "Video processed!")

    async def _process(self, ws: Workspace, source: MediaSource, edits: EditDescription) -> bytes:
        reporter = ws.reporter
        reporter.emit(ProgressStage.PROCESSING, 5, "Preparing video...")
        input_name = await ws.stage("input.mp4", await self.resolver.read(source))

        overlay_name = None
        if edits.has_overlay_content:
            dims = output_dimensions(edits)
            if dims is None:
                logger.warning("Overlay requested without video dimensions, skipping overlay")
            else:
                reporter.emit(ProgressStage.PROCESSING, 10, "Rendering overlays...")
                renderer = OverlayRenderer(dims[0], dims[1], edits.display_height, self.resolver)
                png = await asyncio.to_thread(renderer.render, edits)
                overlay_name = await ws.stage("overlay.png", png)

        music_name = None
        if edits.music_url:
            reporter.emit(ProgressStage.PROCESSING, 15, "Loading music...")
            try:
                music = await self.resolver.read(edits.music_url)
            except StagingError as exc:
                logger.warning("Skipping music track: %s", exc)
            else:
                music_name = await ws.stage("music.mp3", music)

        inputs = StagedInputs(
            source=input_name,
            output=ws.name("output.mp4"),
            overlay=overlay_name,
            music=music_name,
        )
        if inputs.uses_graph and await ws.engine.probe_has_audio(input_name) is False:
            logger.info("Source has no audio stream")
            inputs.source_has_audio = False
        try:
            await ws.run(build_process_command(edits, inputs), 20, 95, "Encoding video...")
        except EngineExecError as exc:
            if not (music_name and inputs.source_has_audio and edits.effective_volume != 0):
                raise
            logger.warning(
                "Encode with mixed audio failed (code %s), retrying with music only",
                exc.returncode,
            )
            muted = edits.model_copy(update={"volume": 0.0})
            await ws.run(build_process_command(muted, inputs), 20, 95, "Retrying without original audio...")

        return await ws.read(inputs.output)

    async def trim_video(
        self,
        source: MediaSource,
        start: float,
        end: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        return await self.process_video(
            source, {"trim_start": start, "trim_end": end}, on_progress
        )

    async def apply_filter(
        self,
        source: MediaSource,
        style: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        return await self.process_video(source, {"filter": style}, on_progress)

    # =========================================================================
    # MULTI STAGE
    # =========================================================================

    async def split_video(
        self,
        source: MediaSource,
        split_time: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[bytes, bytes] | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> tuple[bytes, bytes]:
            return await pipelines.split_video(ws, await self.resolver.read(source), split_time)

        return await self._run("Split", "split", reporter, work, "Video split!")

    async def apply_transition(
        self,
        clip_a: MediaSource,
        clip_b: MediaSource,
        transition: str | None,
        duration: float,
        clip1_duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> bytes:
            return await pipelines.apply_transition(
                ws,
                await self.resolver.read(clip_a),
                await self.resolver.read(clip_b),
                transition,
                duration,
                clip1_duration,
            )

        return await self._run("Transition", "transition", reporter, work, "Transition applied!")

    async def insert_freeze_frames(
        self,
        source: MediaSource,
        freeze_frames: list[Union[FreezeFrame, Mapping[str, Any]]],
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> bytes:
            frames = pipelines.coerce_freeze_frames(freeze_frames)
            return await pipelines.insert_freeze_frames(ws, await self.resolver.read(source), frames)

        return await self._run("Freeze frame", "freeze", reporter, work, "Freeze frames inserted!")

    async def process_clip_speeds(
        self,
        source: MediaSource,
        clip_edits: list[Union[ClipEdit, Mapping[str, Any]]],
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> bytes:
            clips = pipelines.coerce_clip_edits(clip_edits)
            return await pipelines.process_clip_speeds(ws, await self.resolver.read(source), clips)

        return await self._run("Speed processing", "speed", reporter, work, "Speed changes applied!")

    async def merge_clips(
        self,
        clips: list[MediaSource],
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)
        if len(clips) == 1:
            return await self._passthrough("Merge", clips[0], reporter, "Clips merged!")

        async def work(ws: Workspace) -> bytes:
            data = [await self.resolver.read(clip) for clip in clips]
            return await pipelines.merge_clips(ws, data)

        return await self._run("Merge", "merge", reporter, work, "Clips merged!")

    async def apply_speed(
        self,
        source: MediaSource,
        speed: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)
        if speed == 1.0:
            return await self._passthrough("Speed change", source, reporter, "Speed unchanged")

        async def work(ws: Workspace) -> bytes:
            return await pipelines.apply_speed(ws, await self.resolver.read(source), speed)

        return await self._run("Speed change", "retime", reporter, work, "Speed changed!")

    # =========================================================================
    # UTILITIES
    # =========================================================================

    async def generate_thumbnail(
        self,
        source: MediaSource,
        time: float = 0.0,
        width: int = 320,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> bytes:
            if width <= 0:
                raise StagingError(f"Thumbnail width must be positive, got {width}")
            source_name = await ws.stage("input.mp4", await self.resolver.read(source))
            output = ws.name("thumbnail.jpg")
            await ws.run(
                build_thumbnail_command(source_name, time, width, output),
                10, 95, "Generating thumbnail...",
            )
            return await ws.read(output)

        return await self._run("Thumbnail", "thumb", reporter, work, "Thumbnail ready")

    async def extract_audio(
        self,
        source: MediaSource,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes | None:
        reporter = ProgressReporter(on_progress)

        async def work(ws: Workspace) -> bytes:
            reporter.emit(ProgressStage.PROCESSING, 5, "Preparing audio extraction...")
            source_name = await ws.stage("input.mp4", await self.resolver.read(source))
            output = ws.name("output.mp3")
            await ws.run(
                build_extract_audio_command(source_name, output),
                10, 95, "Extracting audio...",
            )
            return await ws.read(output)

        return await self._run("Audio extraction", "audio", reporter, work, "Audio extracted!")

    async def get_video_duration(self, source: MediaSource) -> float | None:
        reporter = ProgressReporter()

        async def work(ws: Workspace) -> float | None:
            name = await ws.stage("probe.mp4", await self.resolver.read(source))
            return await ws.engine.probe_duration(name)

        return await self._run("Duration probe", "probe", reporter, work, "Duration probed")
