"""
Encoding engine contract, the ffmpeg subprocess engine, and the lifecycle
handle that owns one engine instance.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import tempfile
from collections import deque
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from .config import PipelineConfig
from .errors import EngineExecError, EngineLoadError, EngineStateError, StagingError
from .models.progress_models import ProgressReporter, ProgressStage

logger = logging.getLogger(__name__)

EngineProgressCallback = Callable[[float], None]

OUTPUT_TAIL_LINES = 200
ERROR_TAIL_LINES = 40
MAX_LOGGED_COMMAND = 4000

_DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")


def format_command(cmd: list[str]) -> str:
    text = " ".join(cmd)
    if len(text) > MAX_LOGGED_COMMAND:
        return f"{text[:MAX_LOGGED_COMMAND]}... [truncated]"
    return text


def _requested_duration(args: list[str]) -> float | None:
    # The last -t wins; it bounds the output, so progress is measured against it.
    duration = None
    for idx, arg in enumerate(args[:-1]):
        if arg == "-t":
            try:
                duration = float(args[idx + 1])
            except ValueError:
                continue
    return duration


class EncodingEngine:
    """
    Contract for the black-box encoder.

    Files are addressed by plain names inside the engine's private working
    filesystem. ``exec`` runs one command to completion and raises on failure.
    """

    async def load(self) -> None:
        raise NotImplementedError

    async def write_file(self, name: str, data: bytes) -> None:
        raise NotImplementedError

    async def read_file(self, name: str) -> bytes:
        raise NotImplementedError

    async def delete_file(self, name: str) -> None:
        raise NotImplementedError

    async def exec(
        self, args: list[str], on_progress: Optional[EngineProgressCallback] = None
    ) -> None:
        raise NotImplementedError

    async def probe_duration(self, name: str) -> float | None:
        return None

    async def probe_has_audio(self, name: str) -> bool | None:
        """True or False when the engine can tell, None when it cannot."""
        return None

    async def close(self) -> None:
        return None


class FFmpegEngine(EncodingEngine):
    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()
        self.version: str | None = None
        self.work_dir: Path | None = None

    async def load(self) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.config.ffmpeg_bin,
                "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise EngineLoadError(f"ffmpeg binary not found: {self.config.ffmpeg_bin}") from exc

        stdout, _ = await process.communicate()
        if process.returncode != 0:
            raise EngineLoadError(
                f"ffmpeg -version exited with code {process.returncode}"
            )

        lines = stdout.decode("utf-8", errors="replace").splitlines()
        self.version = lines[0].strip() if lines else "unknown"

        parent = self.config.work_dir
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        self.work_dir = Path(tempfile.mkdtemp(prefix="edit-pipeline-", dir=parent))
        logger.info("Loaded %s (work dir %s)", self.version, self.work_dir)

    def _path(self, name: str) -> Path:
        if self.work_dir is None:
            raise EngineStateError("Engine is not loaded")
        if not name or name in {".", ".."} or "/" in name or "\\" in name:
            raise StagingError(f"Invalid engine file name: {name!r}")
        return self.work_dir / name

    async def write_file(self, name: str, data: bytes) -> None:
        path = self._path(name)
        await asyncio.to_thread(path.write_bytes, bytes(data))

    async def read_file(self, name: str) -> bytes:
        path = self._path(name)
        return await asyncio.to_thread(path.read_bytes)

    async def delete_file(self, name: str) -> None:
        self._path(name).unlink()

    async def exec(
        self, args: list[str], on_progress: Optional[EngineProgressCallback] = None
    ) -> None:
        if self.work_dir is None:
            raise EngineStateError("Engine is not loaded")
        if not args:
            raise EngineExecError("Empty ffmpeg command")

        cmd = [
            self.config.ffmpeg_bin,
            "-hide_banner",
            "-y",
            *args[:-1],
            "-progress",
            "pipe:1",
            "-nostats",
            args[-1],
        ]
        logger.info("Executing FFmpeg: %s", format_command(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.work_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise EngineExecError(f"ffmpeg binary not found: {self.config.ffmpeg_bin}") from exc

        if process.stdout is None:
            raise EngineExecError("FFmpeg did not provide a stdout stream")

        duration = _requested_duration(args)
        output_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        last_fraction = 0.0

        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            output_tail.append(line)

            if duration is None and line.startswith("Duration:"):
                match = _DURATION_PATTERN.search(line)
                if match:
                    h, m, s = match.groups()
                    duration = int(h) * 3600 + int(m) * 60 + float(s)

            fraction = None
            if line.startswith("out_time_ms="):
                try:
                    seconds = int(line.split("=", 1)[1]) / 1_000_000
                except ValueError:
                    continue
                if duration and duration > 0:
                    fraction = min(1.0, max(0.0, seconds / duration))
            elif line == "progress=end":
                fraction = 1.0

            if fraction is not None and fraction > last_fraction:
                last_fraction = fraction
                if on_progress is not None:
                    on_progress(fraction)

        returncode = await process.wait()
        if returncode != 0:
            tail_text = "\n".join(list(output_tail)[-ERROR_TAIL_LINES:])
            raise EngineExecError(
                f"FFmpeg failed (code {returncode}). Output:\n{tail_text}",
                returncode=returncode,
                output_tail=tail_text,
            )

    async def _ffprobe(self, name: str, args: list[str]) -> str | None:
        cmd = [self.config.ffprobe_bin, "-v", "error", *args, str(self._path(name))]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except FileNotFoundError as exc:
            logger.warning("Failed to run ffprobe: %s", exc)
            return None

        if process.returncode != 0:
            logger.warning(
                "ffprobe failed for %s: %s",
                name,
                stderr.decode("utf-8", errors="replace").strip(),
            )
            return None
        return stdout.decode("utf-8", errors="replace").strip()

    async def probe_duration(self, name: str) -> float | None:
        output = await self._ffprobe(
            name,
            ["-show_entries", "format=duration", "-of", "default=noprint_wrappers=1:nokey=1"],
        )
        if output is None:
            return None
        try:
            return float(output)
        except ValueError:
            return None

    async def probe_has_audio(self, name: str) -> bool | None:
        output = await self._ffprobe(
            name, ["-select_streams", "a", "-show_entries", "stream=index", "-of", "csv=p=0"]
        )
        if output is None:
            return None
        return bool(output)

    async def close(self) -> None:
        if self.work_dir is not None and self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)
        self.work_dir = None


class EngineState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


class EngineHandle:
    """
    Owns one encoding engine and its lifecycle.

    Concurrent ``ensure_ready`` calls share a single in-flight load. A failed
    load leaves the handle unloaded so a later call starts over. Operations
    against the engine are serialized through ``exclusive()``.
    """

    def __init__(self, engine: EncodingEngine):
        self.engine = engine
        self._state = EngineState.UNLOADED
        self._load_future: asyncio.Future | None = None
        self._lock = asyncio.Lock()
        self._preload_task: asyncio.Task | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    async def ensure_ready(self, reporter: ProgressReporter | None = None) -> EncodingEngine:
        if self._state is EngineState.READY:
            return self.engine

        if self._load_future is not None:
            if reporter is not None:
                reporter.emit(ProgressStage.LOADING, 0, "Waiting for video engine...")
            try:
                await asyncio.shield(self._load_future)
            except EngineLoadError as exc:
                if reporter is not None:
                    reporter.fail(str(exc))
                raise
            return self.engine

        future = asyncio.get_running_loop().create_future()
        self._load_future = future
        self._state = EngineState.LOADING
        if reporter is not None:
            reporter.emit(ProgressStage.LOADING, 0, "Loading video engine...")

        try:
            await self.engine.load()
        except asyncio.CancelledError:
            self._state = EngineState.UNLOADED
            self._load_future = None
            future.cancel()
            raise
        except Exception as exc:
            self._state = EngineState.UNLOADED
            self._load_future = None
            error = exc if isinstance(exc, EngineLoadError) else EngineLoadError(
                f"Failed to load video engine: {exc}"
            )
            logger.error("Engine load failed: %s", error)
            future.set_exception(error)
            # Waiters re-raise it; mark retrieved so an unawaited future stays quiet.
            future.exception()
            if reporter is not None:
                reporter.fail(str(error))
            if error is exc:
                raise
            raise error from exc

        self._state = EngineState.READY
        self._load_future = None
        future.set_result(None)
        if reporter is not None:
            reporter.emit(ProgressStage.LOADING, 5, "Video engine ready")
        return self.engine

    def preload(self) -> asyncio.Task:
        """Start loading in the background; failures are logged, not raised."""
        if self._preload_task is None or self._preload_task.done():
            self._preload_task = asyncio.get_running_loop().create_task(self._preload())
        return self._preload_task

    async def _preload(self) -> None:
        try:
            await self.ensure_ready()
        except EngineLoadError as exc:
            logger.warning("Background engine load failed: %s", exc)

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[EncodingEngine]:
        async with self._lock:
            yield self.engine

    async def close(self) -> None:
        async with self._lock:
            await self.engine.close()
            self._state = EngineState.UNLOADED
