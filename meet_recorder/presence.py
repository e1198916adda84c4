"""
Participant Presence Tracker.

Maintains the canonical roster from asynchronous observations:
- Incremental join/leave notifications (idempotent)
- Full-roster snapshots reconciled against the current roster
- An "alone since" marker read by the exit evaluator

Each observation source is bound to exactly one discipline (incremental or
snapshot) on first use. Mixing both on one source would double-report
JOIN/LEAVE, so the conflicting call is rejected instead of de-duplicated.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, Optional

from meet_recorder.errors import ObservationDisciplineError
from meet_recorder.events import EventCode, Participant, wall_clock_ms
from meet_recorder.telemetry import TelemetryReporter

logger = logging.getLogger(__name__)


class Discipline(str, Enum):
    INCREMENTAL = "incremental"
    SNAPSHOT = "snapshot"


class ParticipantPresenceTracker:
    """Owns the roster. Mutated only through the methods below."""

    def __init__(
        self,
        reporter: TelemetryReporter,
        clock: Callable[[], int] = wall_clock_ms,
    ):
        self._reporter = reporter
        self._clock = clock
        self._roster: dict[str, Participant] = {}
        self._disciplines: dict[str, Discipline] = {}
        # Every display name ever seen, so departed speakers keep their label
        self._names: dict[str, str] = {}
        self._alone_since: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self._roster)

    @property
    def alone_since(self) -> Optional[int]:
        """Wall-clock ms when the roster last became exactly one, else None."""
        return self._alone_since

    def roster(self) -> list[Participant]:
        return list(self._roster.values())

    def __contains__(self, participant_id: str) -> bool:
        return participant_id in self._roster

    def display_name_for(self, participant_id: str) -> Optional[str]:
        return self._names.get(participant_id)

    def _bind(self, source: str, discipline: Discipline) -> None:
        bound = self._disciplines.setdefault(source, discipline)
        if bound is not discipline:
            raise ObservationDisciplineError(
                f"Source '{source}' already delivers {bound.value} updates, "
                f"refusing {discipline.value} update"
            )

    def _update_alone_marker(self, previous_size: int) -> None:
        current = len(self._roster)
        if current == previous_size:
            return
        if current == 1:
            self._alone_since = self._clock()
            logger.info("Only one participant left in the meeting")
        elif previous_size == 1:
            self._alone_since = None

    def _remember(self, participant: Participant) -> None:
        if participant.display_name:
            self._names[participant.id] = participant.display_name

    async def observe_join(self, participant: Participant, source: str = "people_panel") -> bool:
        """Add a participant. Re-observing a known id is a no-op.

        Returns:
            True if the roster changed.
        """
        self._bind(source, Discipline.INCREMENTAL)
        if participant.id in self._roster:
            return False

        previous_size = len(self._roster)
        self._roster[participant.id] = participant
        self._remember(participant)
        self._update_alone_marker(previous_size)
        logger.info(f"Participant joined: {participant.id} ({participant.display_name}), roster={self.size}")

        await self._reporter.report(EventCode.PARTICIPANT_JOIN, participant.to_dict())
        return True

    async def observe_leave(self, participant_id: str, source: str = "people_panel") -> bool:
        """Remove a participant. Removing an unknown id is a no-op.

        Returns:
            True if the roster changed.
        """
        self._bind(source, Discipline.INCREMENTAL)
        participant = self._roster.pop(participant_id, None)
        if participant is None:
            return False

        self._update_alone_marker(len(self._roster) + 1)
        logger.info(f"Participant left: {participant_id}, roster={self.size}")

        await self._reporter.report(EventCode.PARTICIPANT_LEAVE, participant.to_dict())
        return True

    async def reconcile(self, snapshot: Iterable[Participant], source: str = "participant_tiles") -> tuple[int, int]:
        """Replace the roster with ``snapshot``, reporting the difference.

        Returns:
            Tuple of (joined, left) counts.
        """
        self._bind(source, Discipline.SNAPSHOT)
        incoming = {p.id: p for p in snapshot}

        joined = [p for pid, p in incoming.items() if pid not in self._roster]
        left = [p for pid, p in self._roster.items() if pid not in incoming]

        previous_size = len(self._roster)
        self._roster = incoming
        for participant in incoming.values():
            self._remember(participant)
        self._update_alone_marker(previous_size)

        if joined or left:
            logger.info(f"Roster reconciled: +{len(joined)} -{len(left)}, roster={self.size}")

        for participant in joined:
            await self._reporter.report(EventCode.PARTICIPANT_JOIN, participant.to_dict())
        for participant in left:
            await self._reporter.report(EventCode.PARTICIPANT_LEAVE, participant.to_dict())

        return len(joined), len(left)
