"""
Speaker Diarization Accumulator.

Collects raw speech pulses (a participant's speaking indicator lit up at a
given instant) and coalesces them into speaking timeframes on demand.

Timeframes are recomputed from the full pulse history every time they are
read. Pulses arrive in irregular bursts driven by UI changes, and reads are
rare (end of session), so nothing is maintained incrementally.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

from meet_recorder.events import wall_clock_ms

logger = logging.getLogger(__name__)

# Pulses closer together than this belong to the same timeframe
GAP_MS = 3000
# Closed timeframes must be longer than this to be kept
MIN_DURATION_MS = 500


@dataclass(frozen=True)
class SpeakingTimeframe:
    """A coalesced interval of continuous speaking, relative to the capture epoch."""

    speaker_name: str
    start_ms: int
    end_ms: int

    def to_dict(self) -> dict:
        return {"speakerName": self.speaker_name, "start": self.start_ms, "end": self.end_ms}


def coalesce_pulses(
    timestamps: list[int],
    gap_ms: int = GAP_MS,
    min_duration_ms: int = MIN_DURATION_MS,
) -> list[tuple[int, int]]:
    """Coalesce one speaker's pulse timestamps into (start, end) windows.

    A window closed by a gap is kept only if it lasted longer than
    ``min_duration_ms``; the last window is always kept.
    """
    if not timestamps:
        return []

    ordered = sorted(timestamps)
    windows = []
    start = end = ordered[0]
    for t in ordered[1:]:
        if t - end < gap_ms:
            end = t
            continue
        if end - start > min_duration_ms:
            windows.append((start, end))
        start = end = t

    # NOTE: the trailing window skips the minimum-duration filter
    windows.append((start, end))
    return windows


class SpeakerDiarizationAccumulator:
    """Per-participant pulse history plus the last-activity timestamp."""

    def __init__(
        self,
        name_resolver: Optional[Callable[[str], Optional[str]]] = None,
        clock: Callable[[], int] = wall_clock_ms,
    ):
        self._resolve_name = name_resolver or (lambda participant_id: None)
        self._clock = clock
        self._pulses: dict[str, list[int]] = defaultdict(list)
        self._last_activity: Optional[int] = None

    @property
    def last_activity(self) -> Optional[int]:
        """Wall-clock ms of the most recent pulse, or None if nobody spoke yet."""
        return self._last_activity

    @property
    def pulse_count(self) -> int:
        return sum(len(pulses) for pulses in self._pulses.values())

    def record_pulse(self, participant_id: str, timestamp_ms: int) -> None:
        """Append a pulse (ms since capture start) for ``participant_id``."""
        self._pulses[participant_id].append(timestamp_ms)
        self._last_activity = self._clock()

    def compute_timeframes(self) -> list[SpeakingTimeframe]:
        """Coalesce the full pulse history into timeframes sorted by (start, end)."""
        timeframes = []
        for participant_id, pulses in self._pulses.items():
            name = self._resolve_name(participant_id) or participant_id
            for start, end in coalesce_pulses(pulses):
                timeframes.append(SpeakingTimeframe(name, start, end))

        timeframes.sort(key=lambda tf: (tf.start_ms, tf.end_ms))
        logger.debug(f"Computed {len(timeframes)} timeframes from {self.pulse_count} pulses")
        return timeframes
