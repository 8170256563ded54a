"""
Progress reporting and cleanup bookkeeping for pipeline calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ProgressStage(str, Enum):
    """Checkpoint stage carried by every progress event."""
    LOADING = "loading"
    PROCESSING = "processing"
    ENCODING = "encoding"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STAGES = frozenset({ProgressStage.COMPLETE, ProgressStage.ERROR})


class ProcessingProgress(BaseModel):
    stage: ProgressStage
    percent: float = Field(ge=0.0, le=100.0)
    message: str = ""


ProgressCallback = Callable[[ProcessingProgress], None]


class ProgressReporter:
    """
    Forwards progress events for one pipeline call to the caller's sink.

    Percent values are clamped to [0, 100] and never move backwards within a
    call. Repeats of the same stage and message are only forwarded when the
    whole-number percent advances. Once a terminal event (complete/error) has been emitted, later
    events are dropped so the terminal event is always the last one seen.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._percent = 0.0
        self._terminal: ProcessingProgress | None = None
        self.events: list[ProcessingProgress] = []

    @property
    def percent(self) -> float:
        return self._percent

    @property
    def finished(self) -> bool:
        return self._terminal is not None

    @property
    def terminal_event(self) -> ProcessingProgress | None:
        return self._terminal

    def emit(self, stage: ProgressStage, percent: float, message: str = "") -> None:
        if self._terminal is not None:
            return
        value = min(100.0, max(0.0, float(percent)))
        value = max(value, self._percent)
        self._percent = value
        last = self.events[-1] if self.events else None
        if (
            stage not in TERMINAL_STAGES
            and last is not None
            and last.stage is stage
            and last.message == message
            and int(value) <= int(last.percent)
        ):
            # Same checkpoint, no whole-percent advance.
            return
        event = ProcessingProgress(stage=stage, percent=round(value, 2), message=message)
        if stage in TERMINAL_STAGES:
            self._terminal = event
        self.events.append(event)
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception as exc:
            logger.warning("Progress callback raised: %s", exc)

    def complete(self, message: str = "Done") -> None:
        self.emit(ProgressStage.COMPLETE, 100.0, message)

    def fail(self, message: str) -> None:
        self.emit(ProgressStage.ERROR, self._percent, message)

    def scoped(
        self,
        start: float,
        end: float,
        stage: ProgressStage = ProgressStage.ENCODING,
        message: str = "",
    ) -> Callable[[float], None]:
        """Return a callback mapping an engine fraction in [0, 1] onto [start, end]."""
        span = max(0.0, end - start)

        def on_fraction(fraction: float) -> None:
            fraction = min(1.0, max(0.0, fraction))
            self.emit(stage, start + span * fraction, message)

        return on_fraction


@dataclass
class CleanupOutcome:
    """Result of best-effort deletion of pipeline-owned files."""

    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: CleanupOutcome) -> CleanupOutcome:
        return CleanupOutcome(
            deleted=[*self.deleted, *other.deleted],
            failed={**self.failed, **other.failed},
        )
