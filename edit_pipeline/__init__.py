from .config import PipelineConfig
from .engine import EncodingEngine, EngineHandle, EngineState, FFmpegEngine
from .errors import (
    EngineExecError,
    EngineLoadError,
    EngineStateError,
    PipelineError,
    StagingError,
)
from .models import (
    ClipEdit,
    CleanupOutcome,
    EditDescription,
    FreezeFrame,
    ProcessingProgress,
    ProgressStage,
)
from .processor import VideoProcessor

__all__ = [
    "CleanupOutcome",
    "ClipEdit",
    "EditDescription",
    "EncodingEngine",
    "EngineExecError",
    "EngineHandle",
    "EngineLoadError",
    "EngineState",
    "EngineStateError",
    "FFmpegEngine",
    "FreezeFrame",
    "PipelineConfig",
    "PipelineError",
    "ProcessingProgress",
    "ProgressStage",
    "StagingError",
    "VideoProcessor",
]
