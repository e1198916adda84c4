"""
Session State Machine.

Top-level controller for one bot session:

    JOINING -> WAITING_ROOM -> ACTIVE -> LEAVING -> TERMINATED(reason)
                            \\-> TERMINATED(NOT_ADMITTED)

- Joining/waiting room: failures abort the session; a waiting-room timeout is
  a distinct, non-retryable NOT_ADMITTED outcome
- Active: capture runs, observations are applied by a single consumer task,
  and the exit evaluator decides when to leave; surface errors never escape
- Leaving: capture is stopped and awaited, then a best-effort leave click

Teardown always stops a held capture process and closes the browser.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from meet_recorder.capture import CaptureProcessSupervisor
from meet_recorder.config import BotConfig
from meet_recorder.diarization import SpeakerDiarizationAccumulator, SpeakingTimeframe
from meet_recorder.errors import (
    AdmissionTimeout,
    AutomationSurfaceError,
    CaptureProcessError,
    FatalError,
    ObservationDisciplineError,
)
from meet_recorder.events import (
    EventCode,
    Observation,
    ParticipantJoined,
    ParticipantLeft,
    RosterSnapshot,
    SpeechPulse,
    wall_clock_ms,
)
from meet_recorder.exit_conditions import POLL_INTERVAL_SECONDS, ExitConditionEvaluator, LeaveReason
from meet_recorder.meet import GoogleMeetAdapter
from meet_recorder.presence import ParticipantPresenceTracker
from meet_recorder.telemetry import TelemetryReporter

logger = logging.getLogger(__name__)

LEAVE_CLICK_TIMEOUT_MS = 1000
# Upper bound for the consumer to apply what is still queued when leaving
CONSUMER_STOP_TIMEOUT = 30.0


class SessionState(str, Enum):
    JOINING = "joining"
    WAITING_ROOM = "waiting_room"
    ACTIVE = "active"
    LEAVING = "leaving"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    LEFT = "left"
    KICKED = "kicked"
    NOT_ADMITTED = "not_admitted"
    ERROR = "error"


_TERMINATION_FOR_LEAVE = {
    LeaveReason.SOLO_TIMEOUT: TerminationReason.LEFT,
    LeaveReason.MAX_DURATION: TerminationReason.LEFT,
    LeaveReason.INACTIVITY: TerminationReason.LEFT,
    LeaveReason.REQUESTED: TerminationReason.LEFT,
    LeaveReason.KICKED: TerminationReason.KICKED,
    LeaveReason.CAPTURE_FAILED: TerminationReason.ERROR,
}


@dataclass
class RecordingArtifact:
    """What the session hands to the uploader once it has terminated."""

    path: Path
    content_type: str
    speaker_timeframes: list[SpeakingTimeframe] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "recording": str(self.path),
            "contentType": self.content_type,
            "speakerTimeframes": [tf.to_dict() for tf in self.speaker_timeframes],
        }


class MeetingSession:
    """Runs one join -> monitor -> leave cycle."""

    def __init__(
        self,
        config: BotConfig,
        adapter: GoogleMeetAdapter,
        reporter: TelemetryReporter,
        supervisor: Optional[CaptureProcessSupervisor] = None,
        clock: Callable[[], int] = wall_clock_ms,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.config = config
        self.adapter = adapter
        self.reporter = reporter
        self.channel = adapter.channel

        self.tracker = ParticipantPresenceTracker(reporter, clock=clock)
        self.accumulator = SpeakerDiarizationAccumulator(self.tracker.display_name_for, clock=clock)
        self.supervisor = supervisor or CaptureProcessSupervisor(
            config.capture, config.recording_path, clock=clock
        )
        self.evaluator = ExitConditionEvaluator(
            config.automatic_leave,
            self.tracker,
            self.accumulator,
            self.supervisor,
            adapter,
            clock=clock,
            poll_interval=poll_interval,
        )

        self.state = SessionState.JOINING
        self.termination_reason: Optional[TerminationReason] = None
        self.leave_reason: Optional[LeaveReason] = None
        self.admitted = False
        self._consumer_task: Optional[asyncio.Task] = None
        self._leave_requested = asyncio.Event()

    def _set_state(self, state: SessionState) -> None:
        logger.info(f"[{self.config.bot_id}] Session state: {self.state.value} -> {state.value}")
        self.state = state

    def _terminate(self, reason: TerminationReason) -> None:
        self._set_state(SessionState.TERMINATED)
        self.termination_reason = reason
        logger.info(f"[{self.config.bot_id}] Session terminated ({reason.value})")

    def request_leave(self) -> None:
        """Leave gracefully at the next opportunity (e.g. on SIGTERM)."""
        logger.info(f"[{self.config.bot_id}] Leave requested")
        self._leave_requested.set()
        self.evaluator.request_leave()

    async def run(self) -> TerminationReason:
        """Run the session to completion.

        Returns:
            The termination reason (NOT_ADMITTED included).

        Raises:
            FatalError: If joining failed for any reason other than admission
        """
        try:
            admitted = await self._join_unless_leave_requested()
        except AdmissionTimeout as e:
            logger.warning(f"[{self.config.bot_id}] {e}")
            self._terminate(TerminationReason.NOT_ADMITTED)
            await self.reporter.report(EventCode.NOT_ADMITTED, {"description": str(e)})
            await self._teardown()
            return TerminationReason.NOT_ADMITTED
        except Exception as e:
            logger.error(f"[{self.config.bot_id}] Failed to join meeting: {e}")
            self._terminate(TerminationReason.ERROR)
            await self._teardown()
            if isinstance(e, FatalError):
                raise
            raise FatalError(f"Failed to join meeting: {e}") from e

        if not admitted:
            logger.info(f"[{self.config.bot_id}] Leave requested before admission, nothing recorded")
            self.leave_reason = LeaveReason.REQUESTED
            self._terminate(TerminationReason.LEFT)
            await self._teardown()
            return TerminationReason.LEFT

        try:
            reason = await self._monitor()
            await self._leave(reason)
        finally:
            await self._teardown()
        return self.termination_reason

    # ==================== Phases ====================

    async def _join_unless_leave_requested(self) -> bool:
        """Run the join flow until admitted or until a leave is requested.

        Returns:
            True once admitted, False if the join was abandoned on request.
        """
        join = asyncio.create_task(self._join())
        leave = asyncio.create_task(self._leave_requested.wait())
        try:
            await asyncio.wait({join, leave}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            leave.cancel()
            if not join.done():
                join.cancel()
                try:
                    await join
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug(f"Join ended with an error while being abandoned: {e}")

        if join.cancelled():
            return False
        join.result()
        self.admitted = True
        return True

    async def _join(self) -> None:
        await self.reporter.report(EventCode.JOINING_CALL)
        await self.adapter.open(self.config.meeting_url)
        await self.adapter.request_join(self.config.display_name)

        self._set_state(SessionState.WAITING_ROOM)
        await self.reporter.report(EventCode.IN_WAITING_ROOM)
        await self.adapter.await_admission(self.config.automatic_leave.waiting_room_timeout_ms)

    async def _monitor(self) -> LeaveReason:
        self._set_state(SessionState.ACTIVE)
        await self.reporter.report(EventCode.IN_CALL)

        try:
            await self.adapter.prepare_monitoring()
        except AutomationSurfaceError as e:
            logger.warning(f"[{self.config.bot_id}] Could not open People panel: {e}")

        try:
            await self.supervisor.start()
        except CaptureProcessError as e:
            logger.warning(f"[{self.config.bot_id}] Recording could not start: {e}")
            return LeaveReason.CAPTURE_FAILED

        self._consumer_task = asyncio.create_task(self._consume_observations())
        try:
            await self.adapter.install_observers()
        except AutomationSurfaceError as e:
            logger.warning(f"[{self.config.bot_id}] Could not install page observers: {e}")

        return await self.evaluator.watch()

    async def _leave(self, reason: LeaveReason) -> None:
        self.leave_reason = reason
        self._set_state(SessionState.LEAVING)
        await self.reporter.report(EventCode.CALL_ENDED, {"reason": reason.value})

        await self._stop_consumer()
        await self._stop_capture()

        try:
            logger.info("Trying to leave the call...")
            await self.adapter.leave(LEAVE_CLICK_TIMEOUT_MS)
            logger.info("Left call.")
        except Exception as e:
            logger.info(f"Could not click leave (probably already left): {e}")

        await self.adapter.close()
        self._terminate(_TERMINATION_FOR_LEAVE[reason])

    async def _stop_capture(self) -> None:
        if not self.supervisor.holds_process:
            return
        try:
            await self.supervisor.stop()
        except Exception as e:
            logger.error(f"[{self.config.bot_id}] Error stopping recording: {e}")
            return
        if not self.supervisor.output_path.exists():
            logger.warning(f"Recording file missing after stop: {self.supervisor.output_path}")

    async def _teardown(self) -> None:
        await self._stop_consumer()
        await self._stop_capture()
        await self.adapter.close()

    # ==================== Observations ====================

    async def apply(self, observation: Observation) -> None:
        """Apply one inbound observation to the tracker or accumulator."""
        if isinstance(observation, ParticipantJoined):
            await self.tracker.observe_join(observation.participant, observation.source)
        elif isinstance(observation, ParticipantLeft):
            await self.tracker.observe_leave(observation.participant_id, observation.source)
        elif isinstance(observation, RosterSnapshot):
            await self.tracker.reconcile(observation.participants, observation.source)
        elif isinstance(observation, SpeechPulse):
            epoch = self.supervisor.started_at
            if epoch is None or observation.timestamp_ms < epoch:
                logger.debug(f"Dropping speech pulse before capture start: {observation}")
                return
            self.accumulator.record_pulse(observation.participant_id, observation.timestamp_ms - epoch)
        else:
            logger.warning(f"Unknown observation type: {type(observation).__name__}")

    async def _apply_safely(self, observation: Observation) -> None:
        try:
            await self.apply(observation)
        except ObservationDisciplineError as e:
            logger.error(f"Rejected observation: {e}")
        except Exception as e:
            logger.exception(f"Error applying observation {observation}: {e}")

    async def _consume_observations(self) -> None:
        while True:
            observation = await self.channel.get()
            if observation is None:
                return
            await self._apply_safely(observation)

    async def _stop_consumer(self) -> None:
        """Stop the consumer and apply whatever is still queued.

        The consumer finishes the observation it is applying and everything
        queued before the close; it is cancelled only after
        ``CONSUMER_STOP_TIMEOUT``.
        """
        self.channel.close()
        if self._consumer_task and not self._consumer_task.done():
            try:
                await asyncio.wait_for(self._consumer_task, timeout=CONSUMER_STOP_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"Observation consumer did not finish within {CONSUMER_STOP_TIMEOUT}s, cancelled")
        self._consumer_task = None

        while True:
            observation = self.channel.get_nowait()
            if observation is None:
                break
            await self._apply_safely(observation)

    # ==================== Artifact ====================

    def artifact(self) -> RecordingArtifact:
        return RecordingArtifact(
            path=self.supervisor.output_path,
            content_type=self.supervisor.content_type,
            speaker_timeframes=self.accumulator.compute_timeframes(),
        )
