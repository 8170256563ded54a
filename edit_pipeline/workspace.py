from __future__ import annotations

import logging
import uuid
from typing import Optional

from .engine import EncodingEngine, EngineProgressCallback, format_command
from .models.progress_models import CleanupOutcome, ProgressReporter, ProgressStage

logger = logging.getLogger(__name__)


def new_prefix(kind: str) -> str:
    return f"{kind}_{uuid.uuid4().hex[:12]}"


async def cleanup_files(engine: EncodingEngine, names: list[str]) -> CleanupOutcome:
    """Delete every named file, collecting failures instead of raising."""
    outcome = CleanupOutcome()
    for name in dict.fromkeys(names):
        try:
            await engine.delete_file(name)
        except FileNotFoundError:
            # Never produced (e.g. the encode failed before writing output).
            outcome.deleted.append(name)
        except Exception as exc:
            outcome.failed[name] = str(exc) or type(exc).__name__
        else:
            outcome.deleted.append(name)

    if outcome.failed:
        logger.warning(
            "Cleanup left %d file(s) behind: %s",
            len(outcome.failed),
            ", ".join(f"{name} ({reason})" for name, reason in outcome.failed.items()),
        )
    return outcome


class Workspace:
    """
    Per-call view of the engine filesystem.

    Every name handed out is prefixed with a call-unique token and recorded,
    so one cleanup pass removes everything the call created.
    """

    def __init__(self, engine: EncodingEngine, reporter: ProgressReporter, kind: str):
        self.engine = engine
        self.reporter = reporter
        self.prefix = new_prefix(kind)
        self.files: list[str] = []

    def name(self, suffix: str) -> str:
        name = f"{self.prefix}_{suffix}"
        self.files.append(name)
        return name

    async def stage(self, suffix: str, data: bytes) -> str:
        name = self.name(suffix)
        await self.engine.write_file(name, data)
        return name

    async def read(self, name: str) -> bytes:
        return await self.engine.read_file(name)

    async def run(
        self,
        args: list[str],
        start: float,
        end: float,
        message: str = "",
        stage: ProgressStage = ProgressStage.ENCODING,
    ) -> None:
        self.reporter.emit(stage, start, message)
        on_progress: Optional[EngineProgressCallback] = self.reporter.scoped(
            start, end, stage, message
        )
        logger.debug("Running step: %s", format_command(args))
        await self.engine.exec(args, on_progress)

    async def cleanup(self) -> CleanupOutcome:
        return await cleanup_files(self.engine, self.files)
