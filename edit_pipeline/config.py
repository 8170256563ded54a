from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]


@dataclass
class PipelineConfig:
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    work_dir: Path | None = None
    fetch_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    gcp_credentials: str | None = None

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> PipelineConfig:
        load_dotenv(env_file or ROOT_DIR / ".env")

        work_dir_raw = os.getenv("PIPELINE_WORK_DIR", "").strip()
        timeout_raw = os.getenv("PIPELINE_FETCH_TIMEOUT_SECONDS", "30")
        try:
            fetch_timeout = max(1.0, float(timeout_raw))
        except ValueError:
            logger.warning(
                "Invalid PIPELINE_FETCH_TIMEOUT_SECONDS=%r, using 30s", timeout_raw
            )
            fetch_timeout = 30.0

        return cls(
            ffmpeg_bin=os.getenv("FFMPEG_BIN", "ffmpeg"),
            ffprobe_bin=os.getenv("FFPROBE_BIN", "ffprobe"),
            work_dir=Path(work_dir_raw) if work_dir_raw else None,
            fetch_timeout_seconds=fetch_timeout,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            gcp_credentials=os.getenv("GCP_CREDENTIALS") or None,
        )
