from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from engine_fakes import FakeEngine  # noqa: E402

from edit_pipeline.engine import EngineHandle  # noqa: E402
from edit_pipeline.processor import VideoProcessor  # noqa: E402


@pytest.fixture
def fake_engine() -> FakeEngine:
    """Fresh in-memory engine."""
    return FakeEngine()


@pytest.fixture
def processor(fake_engine: FakeEngine) -> VideoProcessor:
    """Processor wired to the fake engine."""
    return VideoProcessor(EngineHandle(fake_engine))


@pytest.fixture
def progress_log() -> list:
    """Collects progress events passed to on_progress."""
    return []
