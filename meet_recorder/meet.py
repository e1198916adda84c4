"""
Google Meet adapter.

Translates the session's needs into operations on an ``AutomationSurface``:
- Join flow (name field, "Ask to join") and the admission wait
- Participant and speaking observers bridged into the ``ObservationChannel``
- Kick detection checks and the best-effort leave click

Participants are observed from one of two sources, chosen by the surface's
``requires_people_panel`` capability:
- People panel open: a MutationObserver on the participant list reports
  joins and leaves (incremental)
- No People panel: the participant tiles are re-read on an interval and
  reported as full snapshots
"""

import logging
from typing import Any

from meet_recorder.debug_tools import attach_mutation_logger, dump_page_html
from meet_recorder.errors import AdmissionTimeout, SurfaceTimeoutError
from meet_recorder.events import (
    ObservationChannel,
    Participant,
    ParticipantJoined,
    ParticipantLeft,
    RosterSnapshot,
    SpeechPulse,
)
from meet_recorder.surface import AutomationSurface

logger = logging.getLogger(__name__)

PEOPLE_PANEL_SOURCE = "people_panel"
TILE_SOURCE = "participant_tiles"
SPEECH_SOURCE = "speaking_indicator"

# Interval between tile snapshots when the People panel is not used
TILE_SNAPSHOT_INTERVAL_MS = 2000

# Names of host functions exposed to the page
JOIN_BINDING = "__meetRecorderJoin"
LEAVE_BINDING = "__meetRecorderLeave"
ROSTER_BINDING = "__meetRecorderRoster"
SPEECH_BINDING = "__meetRecorderSpeech"

_PEOPLE_PANEL_OBSERVER_JS = """
([listSelector, joinFn, leaveFn]) => {
    const list = document.querySelector(listSelector);
    if (!list) return false;

    const idOf = (node) => node.getAttribute && node.getAttribute('data-participant-id');
    const nameOf = (node) => node.getAttribute('aria-label') ||
        ((node.textContent || '').trim().split('\\n')[0] || '');

    list.querySelectorAll('[data-participant-id]').forEach((node) => {
        window[joinFn](idOf(node), nameOf(node));
    });

    const observer = new MutationObserver((mutations) => {
        for (const mutation of mutations) {
            if (mutation.type !== 'childList') continue;
            mutation.addedNodes.forEach((node) => {
                if (idOf(node)) window[joinFn](idOf(node), nameOf(node));
            });
            mutation.removedNodes.forEach((node) => {
                if (idOf(node)) window[leaveFn](idOf(node));
            });
        }
    });
    observer.observe(list, {childList: true, subtree: true});
    return true;
}
"""

_TILE_SNAPSHOT_JS = """
([rosterFn, intervalMs]) => {
    const collect = () => {
        const seen = new Map();
        document.querySelectorAll('[data-participant-id]').forEach((node) => {
            const id = node.getAttribute('data-participant-id');
            if (id && !seen.has(id)) {
                seen.set(id, {id, name: node.getAttribute('aria-label') || ''});
            }
        });
        return Array.from(seen.values());
    };
    window[rosterFn](collect());
    setInterval(() => window[rosterFn](collect()), intervalMs);
    return true;
}
"""

_SPEECH_OBSERVER_JS = """
([indicatorSelector, speechFn]) => {
    const observer = new MutationObserver((mutations) => {
        for (const mutation of mutations) {
            const el = mutation.target;
            if (!(el instanceof Element) || !el.matches(indicatorSelector)) continue;
            const tile = el.closest('[data-participant-id]');
            if (tile) window[speechFn](tile.getAttribute('data-participant-id'), Date.now());
        }
    });
    observer.observe(document.body, {
        attributes: true,
        attributeFilter: ['class', 'data-speaking'],
        subtree: true,
    });
    return true;
}
"""


class GoogleMeetAdapter:
    """Drives a Google Meet page through an automation surface."""

    # Selectors for Google Meet elements (may need updates as Meet UI changes)
    SELECTORS = {
        "name_input": 'input[type="text"][aria-label="Your name"]',
        "ask_to_join_button": '//button[.//span[text()="Ask to join"]]',
        "leave_button": '//button[@aria-label="Leave call"]',
        "people_button": '//button[@aria-label="People"]',
        "participant_list": '[aria-label="Participants"]',
        "returned_home": '//button[.//span[text()="Return to home screen"]]',
        "removed_notice": "text=\"You've been removed from the meeting\"",
        "speaking_indicator": '[data-speaking="true"]',
    }

    # Milliseconds
    NAME_INPUT_TIMEOUT = 30000
    ASK_TO_JOIN_TIMEOUT = 60000
    PEOPLE_PANEL_TIMEOUT = 15000
    KICK_CHECK_TIMEOUT = 500

    def __init__(self, surface: AutomationSurface, channel: ObservationChannel, debug: bool = False):
        self.surface = surface
        self.channel = channel
        self.debug = debug

    @property
    def requires_people_panel(self) -> bool:
        return self.surface.requires_people_panel

    @property
    def participant_source(self) -> str:
        return PEOPLE_PANEL_SOURCE if self.requires_people_panel else TILE_SOURCE

    async def _snapshot(self, label: str) -> None:
        if not self.debug:
            return
        try:
            await dump_page_html(self.surface, label)
        except Exception as e:
            logger.debug(f"Suppressed error saving debug snapshot {label}: {e}")

    # ==================== Join ====================

    async def open(self, meeting_url: str) -> None:
        logger.info(f"Opening meeting page {meeting_url}")
        await self.surface.open(meeting_url)
        await self._snapshot("opened")

    async def request_join(self, display_name: str) -> None:
        """Fill in the display name and ask to join."""
        logger.info("Waiting for the name field...")
        await self.surface.wait_for_selector(self.SELECTORS["name_input"], self.NAME_INPUT_TIMEOUT)
        await self.surface.fill(self.SELECTORS["name_input"], display_name)

        logger.info('Waiting for the "Ask to join" button...')
        await self.surface.wait_for_selector(self.SELECTORS["ask_to_join_button"], self.ASK_TO_JOIN_TIMEOUT)
        await self.surface.click(self.SELECTORS["ask_to_join_button"])
        await self._snapshot("asked-to-join")

    async def await_admission(self, timeout_ms: int) -> None:
        """Wait until the in-call controls appear.

        Raises:
            AdmissionTimeout: If the bot was not admitted within ``timeout_ms``
        """
        logger.info(f"Awaiting admission (up to {timeout_ms / 1000:.0f}s)...")
        try:
            await self.surface.wait_for_selector(self.SELECTORS["leave_button"], timeout_ms)
        except SurfaceTimeoutError as e:
            await self._snapshot("not-admitted")
            raise AdmissionTimeout("Bot was not admitted into the meeting.") from e
        logger.info("Joined call.")
        await self._snapshot("admitted")

    # ==================== Monitoring ====================

    async def prepare_monitoring(self) -> None:
        """Open the People panel when the participant observer lives there."""
        if not self.requires_people_panel:
            return
        logger.info("Opening People panel...")
        await self.surface.wait_for_selector(self.SELECTORS["people_button"], self.PEOPLE_PANEL_TIMEOUT)
        await self.surface.click(self.SELECTORS["people_button"])
        await self.surface.wait_for_selector(self.SELECTORS["participant_list"], self.PEOPLE_PANEL_TIMEOUT)

    async def install_observers(self) -> None:
        """Expose host callbacks and start the page-side observers."""
        await self.surface.expose_function(SPEECH_BINDING, self._on_speech)

        if self.requires_people_panel:
            await self.surface.expose_function(JOIN_BINDING, self._on_join)
            await self.surface.expose_function(LEAVE_BINDING, self._on_leave)
            installed = await self.surface.evaluate(
                _PEOPLE_PANEL_OBSERVER_JS,
                [self.SELECTORS["participant_list"], JOIN_BINDING, LEAVE_BINDING],
            )
            if not installed:
                logger.error("Could not find participants list element")
        else:
            await self.surface.expose_function(ROSTER_BINDING, self._on_roster)
            await self.surface.evaluate(_TILE_SNAPSHOT_JS, [ROSTER_BINDING, TILE_SNAPSHOT_INTERVAL_MS])

        await self.surface.evaluate(_SPEECH_OBSERVER_JS, [self.SELECTORS["speaking_indicator"], SPEECH_BINDING])
        logger.info(f"Observers installed (participants via {self.participant_source})")

        if self.debug:
            await attach_mutation_logger(self.surface, self.SELECTORS["participant_list"])

    async def _on_join(self, participant_id: Any, display_name: Any = "") -> None:
        if not participant_id:
            return
        participant = Participant(str(participant_id), str(display_name or ""))
        await self.channel.publish(ParticipantJoined(participant, PEOPLE_PANEL_SOURCE))

    async def _on_leave(self, participant_id: Any) -> None:
        if not participant_id:
            return
        await self.channel.publish(ParticipantLeft(str(participant_id), PEOPLE_PANEL_SOURCE))

    async def _on_roster(self, entries: Any) -> None:
        participants = tuple(
            Participant(str(entry["id"]), str(entry.get("name") or ""))
            for entry in entries or []
            if isinstance(entry, dict) and entry.get("id")
        )
        await self.channel.publish(RosterSnapshot(participants, TILE_SOURCE))

    async def _on_speech(self, participant_id: Any, timestamp_ms: Any) -> None:
        if not participant_id or not isinstance(timestamp_ms, (int, float)):
            return
        await self.channel.publish(SpeechPulse(str(participant_id), int(timestamp_ms), SPEECH_SOURCE))

    # ==================== Kick detection ====================

    async def returned_home(self) -> bool:
        """The "Return to home screen" button is shown after removal or call end."""
        return await self.surface.is_present(self.SELECTORS["returned_home"])

    async def leave_control_hidden(self) -> bool:
        return await self.surface.is_hidden(self.SELECTORS["leave_button"], timeout_ms=self.KICK_CHECK_TIMEOUT)

    async def removal_notice_visible(self) -> bool:
        return await self.surface.is_visible(self.SELECTORS["removed_notice"], timeout_ms=self.KICK_CHECK_TIMEOUT)

    # ==================== Leave ====================

    async def leave(self, timeout_ms: int = 1000) -> None:
        """Click the leave button. Raises if it cannot be clicked in time."""
        await self.surface.click(self.SELECTORS["leave_button"], timeout_ms=timeout_ms)

    async def close(self) -> None:
        await self.surface.close()
