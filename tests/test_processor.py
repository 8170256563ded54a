"""
Tests for the public VideoProcessor operations.

Every operation is exercised over the in-memory engine: results, the
progress contract (monotonic percent, exactly one terminal event), the
None-on-failure convention and cleanup of pipeline-owned files.
"""

import asyncio

import pytest
from engine_fakes import FakeEngine
from google.auth.exceptions import DefaultCredentialsError

from edit_pipeline import sources
from edit_pipeline.engine import EngineHandle
from edit_pipeline.models.progress_models import ProgressStage
from edit_pipeline.overlay_renderer import OverlayRenderer
from edit_pipeline.processor import VideoProcessor, _short_message

MUSIC_URL = "data:audio/mpeg;base64,AAAA"


def _terminal_events(events):
    return [event for event in events if event.stage in (ProgressStage.COMPLETE, ProgressStage.ERROR)]


def _assert_progress_contract(events):
    percents = [event.percent for event in events]
    assert percents == sorted(percents)
    assert len(_terminal_events(events)) == 1
    assert events[-1] is _terminal_events(events)[0]


# =============================================================================
# SINGLE PASS
# =============================================================================


class TestProcessVideo:
    def test_trim_returns_output_and_cleans_up(self, processor, fake_engine, progress_log):
        """Test a successful call completes at 100% and leaves no files behind."""
        result = asyncio.run(
            processor.process_video(b"video", {"trimStart": 1, "trimEnd": 3}, progress_log.append)
        )

        assert result.startswith(b"out:edit_")
        assert result.endswith(b"_output.mp4")
        assert fake_engine.files == {}
        assert processor.last_cleanup.ok
        _assert_progress_contract(progress_log)
        assert progress_log[-1].stage is ProgressStage.COMPLETE
        assert progress_log[-1].percent == 100
        assert progress_log[0].stage is ProgressStage.LOADING

    def test_encode_failure_returns_none(self, processor, fake_engine, progress_log):
        fake_engine.fail_when(lambda args: True, times=5)

        result = asyncio.run(processor.process_video(b"video", {"blur": 2}, progress_log.append))

        assert result is None
        assert fake_engine.files == {}
        _assert_progress_contract(progress_log)
        assert progress_log[-1].stage is ProgressStage.ERROR
        assert progress_log[-1].message == "Video processing failed: FFmpeg failed (code 1). Output:"

    def test_engine_load_failure_emits_one_error(self, progress_log):
        engine = FakeEngine(load_error=RuntimeError("ffmpeg binary missing"))
        processor = VideoProcessor(EngineHandle(engine))

        result = asyncio.run(processor.process_video(b"video", {}, progress_log.append))

        assert result is None
        assert engine.commands == []
        _assert_progress_contract(progress_log)
        assert "ffmpeg binary missing" in progress_log[-1].message

    def test_invalid_edits_fail_cleanly(self, processor, progress_log):
        result = asyncio.run(
            processor.process_video(b"video", {"trimStart": 5, "trimEnd": 2}, progress_log.append)
        )
        assert result is None
        assert progress_log[-1].message.startswith(
            "Video processing failed: Invalid edit description"
        )

    def test_empty_input_fails(self, processor, progress_log):
        assert asyncio.run(processor.process_video(b"", {}, progress_log.append)) is None
        assert progress_log[-1].message == "Video processing failed: Input is empty"

    def test_cleanup_failure_never_masks_result(self):
        engine = FakeEngine(delete_errors={"input.mp4"})
        processor = VideoProcessor(EngineHandle(engine))

        result = asyncio.run(processor.process_video(b"video", {"blur": 1}))

        assert result is not None
        assert not processor.last_cleanup.ok
        assert all(name.endswith("input.mp4") for name in processor.last_cleanup.failed)

    def test_progress_callback_errors_are_ignored(self, processor):
        def explode(event):
            raise RuntimeError("sink gone")

        assert asyncio.run(processor.process_video(b"video", {"blur": 1}, explode)) is not None

    def test_calls_are_serialized_and_share_one_load(self):
        engine = FakeEngine(load_delay=0.01, exec_delay=0.01)
        processor = VideoProcessor(EngineHandle(engine))

        async def scenario():
            return await asyncio.gather(
                processor.process_video(b"a", {"blur": 1}),
                processor.process_video(b"b", {"blur": 2}),
            )

        first, second = asyncio.run(scenario())
        assert first != second
        assert engine.load_calls == 1
        assert engine.max_active == 1


class TestMusicAndOverlays:
    def test_music_is_mixed_with_original_audio(self, processor, fake_engine):
        asyncio.run(processor.process_video(b"video", {"musicUrl": MUSIC_URL, "musicVolume": 0.3}))

        command = " ".join(fake_engine.commands[0])
        assert "[1:a]volume=0.3[amusic]" in command
        assert "amix=inputs=2" in command

    def test_mix_failure_retries_with_music_only(self, processor, fake_engine, caplog):
        """Test a failed mix is retried once with the original audio muted."""
        fake_engine.fail_when(lambda args: "amix" in " ".join(args))

        result = asyncio.run(processor.process_video(b"video", {"musicUrl": MUSIC_URL}))

        assert result is not None
        assert len(fake_engine.commands) == 2
        assert "[1:a]volume=1[aout]" in " ".join(fake_engine.commands[1])
        assert "-shortest" in fake_engine.commands[1]
        assert "retrying with music only" in caplog.text

    def test_muted_source_failure_is_not_retried(self, processor, fake_engine):
        fake_engine.fail_when(lambda args: True, times=5)
        result = asyncio.run(
            processor.process_video(b"video", {"musicUrl": MUSIC_URL, "volume": 0})
        )
        assert result is None
        assert len(fake_engine.commands) == 1

    def test_unreadable_music_is_skipped(self, processor, fake_engine, caplog):
        result = asyncio.run(processor.process_video(b"video", {"musicUrl": "data:nocomma"}))

        assert result is not None
        assert not any(name.endswith("music.mp3") for name in fake_engine.written)
        assert "-c" in fake_engine.commands[0]
        assert "Skipping music track" in caplog.text

    def test_storage_credentials_error_skips_music(self, processor, fake_engine, monkeypatch, caplog):
        """Test a gs:// music URL without usable credentials degrades to no music."""
        def no_credentials(*args, **kwargs):
            raise DefaultCredentialsError("no ADC")

        monkeypatch.setattr(sources.storage, "Client", no_credentials)

        result = asyncio.run(processor.process_video(b"video", {"musicUrl": "gs://b/song.mp3"}))

        assert result is not None
        assert not any(name.endswith("music.mp3") for name in fake_engine.written)
        assert "Skipping music track" in caplog.text

    def test_overlay_is_rendered_and_composited(self, processor, fake_engine, monkeypatch):
        rendered = []

        def fake_render(self, edits):
            rendered.append((self.width, self.height, self.scale_factor))
            return b"png-bytes"

        monkeypatch.setattr(OverlayRenderer, "render", fake_render)
        edits = {
            "texts": [{"text": "Hello"}],
            "videoWidth": 1920,
            "videoHeight": 1080,
            "displayHeight": 540,
            "crop": {"aspect": "1:1"},
        }

        asyncio.run(processor.process_video(b"video", edits))

        assert rendered == [(1080, 1080, 2.0)]
        overlay = [name for name in fake_engine.written if name.endswith("overlay.png")]
        assert fake_engine.written[overlay[0]] == b"png-bytes"
        assert "overlay=0:0[vout]" in " ".join(fake_engine.commands[0])

    def test_music_over_silent_source_is_not_mixed(self, processor, fake_engine):
        """Test a source with no audio stream takes the music as its only track."""
        fake_engine.has_audio = False
        fake_engine.fail_when(lambda args: True)

        result = asyncio.run(processor.process_video(b"video", {"musicUrl": MUSIC_URL}))

        assert result is None
        assert len(fake_engine.commands) == 1
        command = " ".join(fake_engine.commands[0])
        assert "[0:a]" not in command
        assert "[1:a]volume=1[aout]" in command

    def test_overlay_without_dimensions_is_skipped(self, processor, fake_engine, caplog):
        asyncio.run(processor.process_video(b"video", {"stickers": [{"emoji": "🔥"}]}))

        assert "-filter_complex" not in fake_engine.commands[0]
        assert "without video dimensions" in caplog.text


class TestConvenienceOperations:
    def test_trim_video(self, processor, fake_engine):
        asyncio.run(processor.trim_video(b"video", 2, 6))
        assert fake_engine.commands[0][:4] == ["-ss", "2", "-t", "4"]

    def test_apply_filter(self, processor, fake_engine):
        asyncio.run(processor.apply_filter(b"video", "grayscale"))
        assert "eq=saturation=0.00" in fake_engine.commands[0]


# =============================================================================
# MULTI STAGE
# =============================================================================


class TestMultiStageOperations:
    def test_split(self, progress_log):
        engine = FakeEngine(duration=8.0)
        processor = VideoProcessor(EngineHandle(engine))

        parts = asyncio.run(processor.split_video(b"video", 3, progress_log.append))

        assert parts is not None and len(parts) == 2
        assert engine.files == {}
        _assert_progress_contract(progress_log)

    def test_split_beyond_duration(self, progress_log):
        processor = VideoProcessor(EngineHandle(FakeEngine(duration=8.0)))
        assert asyncio.run(processor.split_video(b"video", 9, progress_log.append)) is None
        assert progress_log[-1].stage is ProgressStage.ERROR

    def test_transition(self, processor, fake_engine):
        result = asyncio.run(processor.apply_transition(b"a", b"b", "zoom-in", 0.5, 2.0))
        assert result is not None
        assert "xfade=transition=zoomin" in " ".join(fake_engine.commands[0])

    def test_freeze_frames_accept_payloads(self, processor, fake_engine, progress_log):
        result = asyncio.run(
            processor.insert_freeze_frames(
                b"video", [{"time": 1.5, "duration": 2}], progress_log.append
            )
        )
        assert result is not None
        assert fake_engine.files == {}
        _assert_progress_contract(progress_log)

    def test_empty_freeze_list_fails(self, processor, progress_log):
        assert asyncio.run(processor.insert_freeze_frames(b"video", [], progress_log.append)) is None
        assert progress_log[-1].message == "Freeze frame failed: No freeze frames supplied"

    def test_clip_speeds(self, processor, fake_engine):
        result = asyncio.run(
            processor.process_clip_speeds(
                b"video", [{"startTime": 0, "endTime": 2, "speed": 0.5}]
            )
        )
        assert result is not None
        assert len(fake_engine.find("setpts=2*PTS")) == 1

    def test_merge(self, processor, fake_engine):
        result = asyncio.run(processor.merge_clips([b"a", b"b"]))
        assert result is not None
        assert len(fake_engine.find("-f concat")) == 1

    def test_single_clip_merge_skips_engine(self, processor, fake_engine, progress_log):
        result = asyncio.run(processor.merge_clips([b"only"], progress_log.append))
        assert result == b"only"
        assert fake_engine.load_calls == 0
        assert progress_log[-1].stage is ProgressStage.COMPLETE

    def test_unit_speed_skips_engine(self, processor, fake_engine):
        assert asyncio.run(processor.apply_speed(b"video", 1.0)) == b"video"
        assert fake_engine.commands == []

    def test_speed(self, processor, fake_engine):
        assert asyncio.run(processor.apply_speed(b"video", 1.5)) is not None
        assert len(fake_engine.find("atempo=1.5")) == 1


# =============================================================================
# UTILITIES
# =============================================================================


class TestUtilities:
    def test_thumbnail(self, processor, fake_engine):
        result = asyncio.run(processor.generate_thumbnail(b"video", time=1.0, width=160))
        assert result.endswith(b"_thumbnail.jpg")
        assert "scale=160:-1" in fake_engine.commands[0]

    def test_thumbnail_rejects_bad_width(self, processor, progress_log):
        assert asyncio.run(processor.generate_thumbnail(b"video", width=0, on_progress=progress_log.append)) is None
        assert progress_log[-1].stage is ProgressStage.ERROR

    def test_extract_audio(self, processor, fake_engine):
        result = asyncio.run(processor.extract_audio(b"video"))
        assert result.endswith(b"_output.mp3")
        assert "libmp3lame" in fake_engine.commands[0]

    def test_duration_probe(self):
        engine = FakeEngine(duration=12.5)
        processor = VideoProcessor(EngineHandle(engine))
        assert asyncio.run(processor.get_video_duration(b"video")) == 12.5
        assert engine.files == {}


@pytest.mark.parametrize(
    "exc,expected",
    [
        (RuntimeError("first line\nsecond line"), "Op failed: first line"),
        (RuntimeError(""), "Op failed: RuntimeError"),
    ],
)
def test_short_message(exc, expected):
    assert _short_message("Op", exc) == expected


def test_short_message_is_bounded():
    assert len(_short_message("Op", RuntimeError("x" * 500))) == 200


def test_cleanup_failure_after_failed_encode_keeps_error():
    engine = FakeEngine(delete_errors={"input.mp4"})
    engine.fail_when(lambda args: True, times=5)
    processor = VideoProcessor(EngineHandle(engine))
    events = []

    result = asyncio.run(processor.process_video(b"video", {"blur": 1}, events.append))

    assert result is None
    assert events[-1].message == "Video processing failed: FFmpeg failed (code 1). Output:"
    assert not processor.last_cleanup.ok
