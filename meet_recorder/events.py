"""
Event types shared by the session components.

Two directions:
- Outbound telemetry codes (``EventCode``) reported to the bot service
- Inbound observations pushed by the automation surface into the session
  through a bounded ``ObservationChannel``
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)

# Backpressure limit for observations waiting to be applied
OBSERVATION_QUEUE_SIZE = 1024


def wall_clock_ms() -> int:
    """Current wall-clock time in milliseconds (same clock as the page's Date.now())."""
    return int(time.time() * 1000)


class EventCode(str, Enum):
    """Telemetry event codes understood by the bot service."""

    READY_TO_DEPLOY = "READY_TO_DEPLOY"
    DEPLOYING = "DEPLOYING"
    JOINING_CALL = "JOINING_CALL"
    IN_WAITING_ROOM = "IN_WAITING_ROOM"
    NOT_ADMITTED = "NOT_ADMITTED"
    IN_CALL = "IN_CALL"
    CALL_ENDED = "CALL_ENDED"
    DONE = "DONE"
    FATAL = "FATAL"
    PARTICIPANT_JOIN = "PARTICIPANT_JOIN"
    PARTICIPANT_LEAVE = "PARTICIPANT_LEAVE"
    LOG = "LOG"


@dataclass(frozen=True)
class Participant:
    """A meeting participant. Identity is ``id``."""

    id: str
    display_name: str = ""

    def to_dict(self) -> dict:
        return {"participantId": self.id, "displayName": self.display_name}


@dataclass(frozen=True)
class ParticipantJoined:
    participant: Participant
    source: str


@dataclass(frozen=True)
class ParticipantLeft:
    participant_id: str
    source: str


@dataclass(frozen=True)
class RosterSnapshot:
    """Full participant list from a source that reports state, not deltas."""

    participants: tuple[Participant, ...]
    source: str


@dataclass(frozen=True)
class SpeechPulse:
    """A participant was speaking at ``timestamp_ms`` (wall clock, from the page)."""

    participant_id: str
    timestamp_ms: int
    source: str = "speaking_indicator"


Observation = Union[ParticipantJoined, ParticipantLeft, RosterSnapshot, SpeechPulse]


class ObservationChannel:
    """Bounded inbound queue between the automation surface and the session.

    Producers are host-side callbacks invoked from page observers; the session
    runs exactly one consumer.
    """

    def __init__(self, maxsize: int = OBSERVATION_QUEUE_SIZE):
        self._queue: asyncio.Queue[Optional[Observation]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def publish(self, observation: Observation) -> bool:
        """Queue an observation, waiting for room when the channel is full.

        Returns:
            False if the channel was already closed and the observation dropped.
        """
        if self._closed:
            logger.debug(f"Dropping observation after close: {observation}")
            return False
        await self._queue.put(observation)
        return True

    async def get(self) -> Optional[Observation]:
        """Wait for the next observation. Returns None once closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> Optional[Observation]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        """Stop accepting observations; already queued ones stay readable.

        A waiting consumer is woken with None.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # The consumer is busy; get() returns None once the queue is empty
            pass
