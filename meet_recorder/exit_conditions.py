"""
Exit Condition Evaluator.

Polls the session's bookkeeping every few seconds and decides when the bot
should leave. Predicates are checked in a fixed priority order and the first
hit supplies the reason:

1. Solo timeout - the bot has been alone longer than ``everyone_left_timeout_ms``
2. Kicked - returned to home screen, leave control gone, or removal notice
3. Max duration - recording has run longer than ``max_duration_ms``
4. Inactivity - nobody has spoken for ``inactivity_timeout_ms``
5. Capture failed - ffmpeg exited on its own

Kick checks that fail count as kicked: a broken page must end the loop rather
than keep the bot in a meeting it can no longer observe.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from meet_recorder.capture import CaptureProcessSupervisor
from meet_recorder.config import AutomaticLeaveConfig
from meet_recorder.diarization import SpeakerDiarizationAccumulator
from meet_recorder.events import wall_clock_ms
from meet_recorder.presence import ParticipantPresenceTracker

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5.0


class LeaveReason(str, Enum):
    SOLO_TIMEOUT = "solo-timeout"
    KICKED = "kicked"
    MAX_DURATION = "max-duration"
    INACTIVITY = "inactivity"
    CAPTURE_FAILED = "capture-failed"
    REQUESTED = "requested"


class KickDetector(Protocol):
    """Remote-surface checks that reveal the bot is no longer in the call."""

    async def returned_home(self) -> bool:
        ...

    async def leave_control_hidden(self) -> bool:
        ...

    async def removal_notice_visible(self) -> bool:
        ...


class ExitConditionEvaluator:
    """Evaluates leave conditions for one session."""

    def __init__(
        self,
        config: AutomaticLeaveConfig,
        tracker: ParticipantPresenceTracker,
        accumulator: SpeakerDiarizationAccumulator,
        supervisor: CaptureProcessSupervisor,
        kick_detector: KickDetector,
        clock: Callable[[], int] = wall_clock_ms,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.config = config
        self.tracker = tracker
        self.accumulator = accumulator
        self.supervisor = supervisor
        self.kick_detector = kick_detector
        self.poll_interval = poll_interval
        self._clock = clock
        self._leave_requested = asyncio.Event()

    def request_leave(self) -> None:
        """Ask the running ``watch()`` loop to stop at once."""
        self._leave_requested.set()

    def _solo_timeout(self, now: int) -> bool:
        if self.tracker.size != 1 or self.tracker.alone_since is None:
            return False
        alone_ms = now - self.tracker.alone_since
        limit = self.config.everyone_left_timeout_ms
        logger.info(f"Only me left in the meeting ({alone_ms / 1000:.0f} / {limit / 1000:.0f}s)")
        return alone_ms > limit

    async def _check_kick(self, name: str, check: Callable[[], Awaitable[bool]]) -> bool:
        try:
            return bool(await check())
        except Exception as e:
            logger.warning(f"Kick check '{name}' failed, treating as kicked: {e}")
            return True

    async def _kicked(self) -> bool:
        checks = (
            ("returned home", self.kick_detector.returned_home),
            ("leave control hidden", self.kick_detector.leave_control_hidden),
            ("removal notice", self.kick_detector.removal_notice_visible),
        )
        for name, check in checks:
            if await self._check_kick(name, check):
                logger.info(f"Kicked ({name})")
                return True
        return False

    def _max_duration(self, now: int) -> bool:
        started_at = self.supervisor.started_at
        if started_at is None:
            return False
        return now - started_at > self.config.max_duration_ms

    def _inactive(self, now: int) -> bool:
        last_activity = self.accumulator.last_activity
        if last_activity is None:
            return False
        return now - last_activity > self.config.inactivity_timeout_ms

    async def evaluate(self) -> Optional[LeaveReason]:
        """Run one tick. Returns the first matching reason, or None to stay."""
        if self._leave_requested.is_set():
            return LeaveReason.REQUESTED

        if self._solo_timeout(self._clock()):
            return LeaveReason.SOLO_TIMEOUT
        if await self._kicked():
            return LeaveReason.KICKED

        # Kick checks may take a while; re-read the clock
        now = self._clock()
        if self._max_duration(now):
            return LeaveReason.MAX_DURATION
        if self._inactive(now):
            return LeaveReason.INACTIVITY
        if self.supervisor.exited_unexpectedly:
            logger.warning("Capture process exited unexpectedly")
            return LeaveReason.CAPTURE_FAILED
        return None

    async def watch(self) -> LeaveReason:
        """Tick every ``poll_interval`` seconds until a leave condition holds."""
        logger.info("Waiting until a leave condition is fulfilled...")
        while True:
            reason = await self.evaluate()
            if reason is not None:
                logger.info(f"Leave condition met: {reason.value}")
                return reason
            try:
                await asyncio.wait_for(self._leave_requested.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
