"""Tests for meet_recorder/exit_conditions.py - Automatic leave decisions."""

import asyncio

import pytest

from meet_recorder.config import AutomaticLeaveConfig
from meet_recorder.diarization import SpeakerDiarizationAccumulator
from meet_recorder.events import Participant
from meet_recorder.exit_conditions import ExitConditionEvaluator, LeaveReason
from meet_recorder.presence import ParticipantPresenceTracker

LEAVE = AutomaticLeaveConfig(
    waiting_room_timeout_ms=60_000,
    everyone_left_timeout_ms=60_000,
    max_duration_ms=3 * 60 * 60 * 1000,
    inactivity_timeout_ms=30 * 60 * 1000,
)


class FakeKickDetector:
    def __init__(self):
        self.home = False
        self.hidden = False
        self.removed = False
        self.error = None
        self.calls = 0

    async def returned_home(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.home

    async def leave_control_hidden(self):
        return self.hidden

    async def removal_notice_visible(self):
        return self.removed


@pytest.fixture
def tracker(reporter, clock):
    return ParticipantPresenceTracker(reporter, clock=clock)


@pytest.fixture
def accumulator(clock):
    return SpeakerDiarizationAccumulator(clock=clock)


@pytest.fixture
def kicks():
    return FakeKickDetector()


@pytest.fixture
def evaluator(tracker, accumulator, supervisor, kicks, clock):
    return ExitConditionEvaluator(LEAVE, tracker, accumulator, supervisor, kicks, clock=clock, poll_interval=0.01)


# ==================== Individual predicates ====================


class TestPredicates:
    @pytest.mark.asyncio
    async def test_nothing_to_do(self, evaluator):
        assert await evaluator.evaluate() is None

    @pytest.mark.asyncio
    async def test_solo_timeout(self, evaluator, tracker, clock):
        await tracker.observe_join(Participant("bot", "MeetingBot"))
        clock.advance(61_000)
        assert await evaluator.evaluate() is LeaveReason.SOLO_TIMEOUT

    @pytest.mark.asyncio
    async def test_solo_timeout_is_strict(self, evaluator, tracker, clock):
        await tracker.observe_join(Participant("bot", "MeetingBot"))
        clock.advance(60_000)
        assert await evaluator.evaluate() is None

    @pytest.mark.asyncio
    async def test_not_solo_with_company(self, evaluator, tracker, clock):
        await tracker.observe_join(Participant("bot"))
        await tracker.observe_join(Participant("alice"))
        clock.advance(10 * 60_000)
        assert await evaluator.evaluate() is None

    @pytest.mark.parametrize("flag", ["home", "hidden", "removed"])
    @pytest.mark.asyncio
    async def test_kicked(self, evaluator, kicks, flag):
        setattr(kicks, flag, True)
        assert await evaluator.evaluate() is LeaveReason.KICKED

    @pytest.mark.asyncio
    async def test_failing_kick_check_counts_as_kicked(self, evaluator, kicks):
        kicks.error = RuntimeError("Target closed")
        assert await evaluator.evaluate() is LeaveReason.KICKED

    @pytest.mark.asyncio
    async def test_max_duration(self, evaluator, supervisor, clock):
        await supervisor.start()
        clock.advance(LEAVE.max_duration_ms + 1)
        assert await evaluator.evaluate() is LeaveReason.MAX_DURATION

    @pytest.mark.asyncio
    async def test_no_max_duration_before_capture(self, evaluator, clock):
        clock.advance(LEAVE.max_duration_ms * 2)
        assert await evaluator.evaluate() is None

    @pytest.mark.asyncio
    async def test_inactivity(self, evaluator, accumulator, clock):
        accumulator.record_pulse("alice", 0)
        clock.advance(LEAVE.inactivity_timeout_ms + 1)
        assert await evaluator.evaluate() is LeaveReason.INACTIVITY

    @pytest.mark.asyncio
    async def test_no_inactivity_without_any_speech(self, evaluator, clock):
        clock.advance(LEAVE.inactivity_timeout_ms * 2)
        assert await evaluator.evaluate() is None

    @pytest.mark.asyncio
    async def test_capture_failed(self, evaluator, supervisor):
        supervisor.exited_unexpectedly = True
        assert await evaluator.evaluate() is LeaveReason.CAPTURE_FAILED

    @pytest.mark.asyncio
    async def test_requested(self, evaluator):
        evaluator.request_leave()
        assert await evaluator.evaluate() is LeaveReason.REQUESTED


# ==================== Priority ====================


class TestPriority:
    @pytest.mark.asyncio
    async def test_solo_beats_kicked(self, evaluator, tracker, kicks, clock):
        await tracker.observe_join(Participant("bot"))
        clock.advance(61_000)
        kicks.home = True
        assert await evaluator.evaluate() is LeaveReason.SOLO_TIMEOUT

    @pytest.mark.asyncio
    async def test_kicked_beats_max_duration(self, evaluator, supervisor, kicks, clock):
        await supervisor.start()
        clock.advance(LEAVE.max_duration_ms + 1)
        kicks.hidden = True
        assert await evaluator.evaluate() is LeaveReason.KICKED

    @pytest.mark.asyncio
    async def test_max_duration_beats_inactivity(self, evaluator, supervisor, accumulator, clock):
        await supervisor.start()
        accumulator.record_pulse("alice", 0)
        clock.advance(LEAVE.max_duration_ms + 1)
        assert await evaluator.evaluate() is LeaveReason.MAX_DURATION

    @pytest.mark.asyncio
    async def test_inactivity_beats_capture_failed(self, evaluator, supervisor, accumulator, clock):
        accumulator.record_pulse("alice", 0)
        clock.advance(LEAVE.inactivity_timeout_ms + 1)
        supervisor.exited_unexpectedly = True
        assert await evaluator.evaluate() is LeaveReason.INACTIVITY

    @pytest.mark.asyncio
    async def test_solo_skips_kick_checks(self, evaluator, tracker, kicks, clock):
        await tracker.observe_join(Participant("bot"))
        clock.advance(61_000)
        await evaluator.evaluate()
        assert kicks.calls == 0


# ==================== watch ====================


class TestWatch:
    @pytest.mark.asyncio
    async def test_watch_returns_first_reason(self, evaluator, kicks):
        async def kick_later():
            await asyncio.sleep(0.03)
            kicks.removed = True

        task = asyncio.create_task(kick_later())
        reason = await asyncio.wait_for(evaluator.watch(), timeout=2)
        await task
        assert reason is LeaveReason.KICKED
        assert kicks.calls >= 2

    @pytest.mark.asyncio
    async def test_request_leave_wakes_watch(self, tracker, accumulator, supervisor, kicks, clock):
        # Long poll interval: only the request can end the wait in time
        evaluator = ExitConditionEvaluator(
            LEAVE, tracker, accumulator, supervisor, kicks, clock=clock, poll_interval=60
        )
        watch = asyncio.create_task(evaluator.watch())
        await asyncio.sleep(0.01)
        evaluator.request_leave()
        assert await asyncio.wait_for(watch, timeout=2) is LeaveReason.REQUESTED
