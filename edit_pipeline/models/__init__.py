from .edit_models import (
    ClipEdit,
    CropSettings,
    CutoutSettings,
    EditDescription,
    FreezeFrame,
    GreenScreenSettings,
    MaskSettings,
    SpeedKeyframe,
    StabilizationSettings,
    StickerOverlay,
    TextGradient,
    TextOverlay,
    TransformSettings,
    TuneSettings,
)
from .progress_models import (
    CleanupOutcome,
    ProcessingProgress,
    ProgressCallback,
    ProgressReporter,
    ProgressStage,
)

__all__ = [
    "ClipEdit",
    "CropSettings",
    "CutoutSettings",
    "EditDescription",
    "FreezeFrame",
    "GreenScreenSettings",
    "MaskSettings",
    "SpeedKeyframe",
    "StabilizationSettings",
    "StickerOverlay",
    "TextGradient",
    "TextOverlay",
    "TransformSettings",
    "TuneSettings",
    "CleanupOutcome",
    "ProcessingProgress",
    "ProgressCallback",
    "ProgressReporter",
    "ProgressStage",
]
