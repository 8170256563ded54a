"""
Tests for the multi-stage pipelines.

Pipelines are driven directly against a Workspace over the in-memory
engine, so the tests can inspect every sub-encode and the concat list.
"""

import asyncio

import pytest
from engine_fakes import FakeEngine

from edit_pipeline import pipelines
from edit_pipeline.errors import EngineExecError, StagingError
from edit_pipeline.models.edit_models import ClipEdit, FreezeFrame
from edit_pipeline.models.progress_models import ProgressReporter
from edit_pipeline.workspace import Workspace, cleanup_files, new_prefix


def _workspace(engine=None, kind="test"):
    return Workspace(engine or FakeEngine(), ProgressReporter(), kind)


def _concat_entries(engine, ws):
    listing = engine.written[f"{ws.prefix}_concat.txt"].decode()
    return [line[len("file '"):-1] for line in listing.splitlines()]


# =============================================================================
# WORKSPACE
# =============================================================================


class TestWorkspace:
    def test_prefixes_are_unique_per_call(self):
        assert new_prefix("edit") != new_prefix("edit")
        assert new_prefix("freeze").startswith("freeze_")

    def test_names_are_prefixed_and_recorded(self):
        ws = _workspace(kind="split")
        name = ws.name("part1.mp4")
        assert name == f"{ws.prefix}_part1.mp4"
        assert ws.files == [name]

    def test_cleanup_counts_missing_files_as_deleted(self):
        """Test outputs that were never produced do not count as failures."""
        engine = FakeEngine()
        ws = _workspace(engine)

        async def scenario():
            await ws.stage("input.mp4", b"data")
            ws.name("output.mp4")
            return await ws.cleanup()

        outcome = asyncio.run(scenario())
        assert outcome.ok
        assert len(outcome.deleted) == 2
        assert engine.files == {}

    def test_cleanup_collects_failures(self, caplog):
        engine = FakeEngine(delete_errors={"locked.mp4"})
        engine.files = {"a_locked.mp4": b"x", "a_free.mp4": b"y"}

        outcome = asyncio.run(cleanup_files(engine, ["a_locked.mp4", "a_free.mp4", "a_free.mp4"]))

        assert outcome.deleted == ["a_free.mp4"]
        assert "a_locked.mp4" in outcome.failed
        assert "Cleanup left 1 file(s) behind" in caplog.text

    def test_run_maps_engine_fraction_to_range(self):
        ws = _workspace()
        asyncio.run(ws.run(["-i", "in.mp4", "out.mp4"], 20, 60, "Encoding..."))
        assert [event.percent for event in ws.reporter.events] == [20, 40, 60]


# =============================================================================
# SPLIT / TRANSITION
# =============================================================================


class TestSplit:
    def test_split_produces_two_parts(self):
        engine = FakeEngine(duration=10.0)
        ws = _workspace(engine, "split")

        first, second = asyncio.run(pipelines.split_video(ws, b"video", 4))

        assert first == f"out:{ws.prefix}_part1.mp4".encode()
        assert second == f"out:{ws.prefix}_part2.mp4".encode()
        assert engine.commands[0][:4] == ["-i", f"{ws.prefix}_input.mp4", "-t", "4"]
        assert engine.commands[1][:4] == ["-i", f"{ws.prefix}_input.mp4", "-ss", "4"]

    @pytest.mark.parametrize("split_time", [0, -1, 10, 12.5])
    def test_split_outside_clip_is_rejected(self, split_time):
        engine = FakeEngine(duration=10.0)
        with pytest.raises(StagingError):
            asyncio.run(pipelines.split_video(_workspace(engine), b"video", split_time))
        assert engine.commands == []

    def test_unknown_duration_does_not_block_split(self):
        engine = FakeEngine(duration=None)
        asyncio.run(pipelines.split_video(_workspace(engine), b"video", 100))
        assert len(engine.commands) == 2


def test_transition_stages_both_clips():
    engine = FakeEngine()
    ws = _workspace(engine, "transition")

    result = asyncio.run(pipelines.apply_transition(ws, b"a", b"b", "crossfade", 1.0, 5.0))

    assert result == f"out:{ws.prefix}_output.mp4".encode()
    assert engine.written[f"{ws.prefix}_clip_a.mp4"] == b"a"
    assert engine.written[f"{ws.prefix}_clip_b.mp4"] == b"b"
    assert len(engine.find("xfade=transition=fade:duration=1:offset=4")) == 1


def test_transition_between_clips_without_audio():
    engine = FakeEngine(has_audio=False)
    asyncio.run(pipelines.apply_transition(_workspace(engine), b"a", b"b", "wipe", 1.0, 3.0))

    cmd = engine.commands[0]
    assert "[aout]" not in cmd
    assert "acrossfade" not in " ".join(cmd)


# =============================================================================
# FREEZE FRAMES
# =============================================================================


class TestFreezePlan:
    def test_plan_alternates_cuts_and_holds(self):
        steps = pipelines.plan_freeze_segments(
            [FreezeFrame(time=5, duration=2), FreezeFrame(time=2, duration=1)]
        )
        assert [(s.kind, s.start, s.duration, s.point_index) for s in steps] == [
            ("cut", 0.0, 2.0, 0),
            ("hold", 2.0, 1.0, 0),
            ("cut", 2.0, 3.0, 1),
            ("hold", 5.0, 2.0, 1),
            ("cut", 5.0, None, None),
        ]

    def test_point_at_zero_has_no_leading_cut(self):
        steps = pipelines.plan_freeze_segments([FreezeFrame(time=0, duration=1)])
        assert [step.kind for step in steps] == ["hold", "cut"]

    def test_coincident_points_are_both_held(self):
        steps = pipelines.plan_freeze_segments(
            [FreezeFrame(time=3, duration=1), FreezeFrame(time=3, duration=2)]
        )
        assert [step.kind for step in steps] == ["cut", "hold", "hold", "cut"]


class TestInsertFreezeFrames:
    def test_segments_are_joined_in_timeline_order(self):
        """Test each point produces capture and hold steps spliced between cuts."""
        engine = FakeEngine()
        ws = _workspace(engine, "freeze")
        frames = [FreezeFrame(time=2, duration=1), FreezeFrame(time=5, duration=2)]

        result = asyncio.run(pipelines.insert_freeze_frames(ws, b"video", frames))

        assert result == f"out:{ws.prefix}_output.mp4".encode()
        assert len(engine.commands) == 8
        assert _concat_entries(engine, ws) == [
            f"{ws.prefix}_seg_0.mp4",
            f"{ws.prefix}_freeze_0.mp4",
            f"{ws.prefix}_seg_2.mp4",
            f"{ws.prefix}_freeze_1.mp4",
            f"{ws.prefix}_seg_4.mp4",
        ]
        assert len(engine.find("-vframes 1 -q:v 2")) == 2
        assert len(engine.find("-loop 1")) == 2

    def test_source_cuts_match_hold_stream_format(self):
        engine = FakeEngine()
        ws = _workspace(engine, "freeze")
        asyncio.run(
            pipelines.insert_freeze_frames(ws, b"video", [FreezeFrame(time=2, duration=1)])
        )

        cuts = [cmd for cmd in engine.commands if "_seg_" in cmd[-1]]
        assert len(cuts) == 2
        for cmd in cuts:
            assert cmd[cmd.index("-ar") + 1] == "44100"
            assert cmd[cmd.index("-r") + 1] == "30"

    def test_progress_reaches_join_range(self):
        ws = _workspace()
        asyncio.run(
            pipelines.insert_freeze_frames(ws, b"video", [FreezeFrame(time=1, duration=1)])
        )
        messages = {event.message: event.percent for event in ws.reporter.events}
        assert messages["Joining segments..."] == 95
        assert ws.reporter.percent == 95

    def test_empty_list_is_rejected(self):
        with pytest.raises(StagingError):
            asyncio.run(pipelines.insert_freeze_frames(_workspace(), b"video", []))

    def test_failing_step_aborts_join(self):
        engine = FakeEngine()
        engine.fail_when(lambda args: "-loop" in args)
        with pytest.raises(EngineExecError):
            asyncio.run(
                pipelines.insert_freeze_frames(
                    _workspace(engine), b"video", [FreezeFrame(time=1, duration=1)]
                )
            )
        assert engine.find("concat") == []


# =============================================================================
# SPEED / MERGE
# =============================================================================


class TestClipSpeeds:
    def test_only_retimed_clips_get_a_speed_step(self):
        engine = FakeEngine()
        ws = _workspace(engine, "speed")
        clips = [
            ClipEdit(start_time=0, end_time=2, speed=1.0),
            ClipEdit(start_time=2, end_time=4, speed=2.0),
        ]

        asyncio.run(pipelines.process_clip_speeds(ws, b"video", clips))

        assert len(engine.commands) == 4
        assert len(engine.find("setpts=0.5*PTS")) == 1
        assert _concat_entries(engine, ws) == [
            f"{ws.prefix}_clip_0.mp4",
            f"{ws.prefix}_clip_out_1.mp4",
        ]

    def test_empty_list_is_rejected(self):
        with pytest.raises(StagingError):
            asyncio.run(pipelines.process_clip_speeds(_workspace(), b"video", []))

    def test_invalid_clip_payload(self):
        with pytest.raises(StagingError):
            pipelines.coerce_clip_edits([{"startTime": 3, "endTime": 1}])

    def test_camel_case_payloads_are_accepted(self):
        clips = pipelines.coerce_clip_edits([{"startTime": 1, "endTime": 3, "speed": 0.5}])
        assert clips == [ClipEdit(start_time=1, end_time=3, speed=0.5)]


class TestMergeAndSpeed:
    def test_merge_copies_streams(self):
        engine = FakeEngine()
        ws = _workspace(engine, "merge")

        asyncio.run(pipelines.merge_clips(ws, [b"one", b"two", b"three"]))

        assert _concat_entries(engine, ws) == [
            f"{ws.prefix}_merge_0.mp4",
            f"{ws.prefix}_merge_1.mp4",
            f"{ws.prefix}_merge_2.mp4",
        ]
        assert engine.commands[-1][6:8] == ["-c", "copy"]

    def test_speed_retries_without_audio(self, caplog):
        """Test a failed audio retime falls back to a video-only encode."""
        engine = FakeEngine()
        engine.fail_when(lambda args: "-filter:a" in args)
        ws = _workspace(engine, "retime")

        result = asyncio.run(pipelines.apply_speed(ws, b"video", 2.0))

        assert result == f"out:{ws.prefix}_output.mp4".encode()
        assert len(engine.commands) == 2
        assert "-an" in engine.commands[1]
        assert "retrying without audio" in caplog.text

    @pytest.mark.parametrize("speed", [0, -2])
    def test_non_positive_speed_is_rejected(self, speed):
        with pytest.raises(StagingError):
            asyncio.run(pipelines.apply_speed(_workspace(), b"video", speed))


def test_cut_durations_cover_timeline_up_to_last_point():
    """Test cuts between unsorted points add up to the last freeze instant."""
    frames = [
        FreezeFrame(time=7.5, duration=1),
        FreezeFrame(time=1.0, duration=2),
        FreezeFrame(time=4.0, duration=0.5),
    ]
    steps = pipelines.plan_freeze_segments(frames)
    holds = [step.start for step in steps if step.is_hold]
    cuts = [step.duration for step in steps if not step.is_hold and step.duration is not None]
    assert holds == [1.0, 4.0, 7.5]
    assert sum(cuts) == pytest.approx(7.5)
