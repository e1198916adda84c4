#!/usr/bin/env python3
"""
Recording bot entry point.

Loads the bot configuration, starts telemetry, runs one meeting session and
maps its outcome to a process exit code:

    0 - recording finished (DONE reported), the bot was not admitted, or it
        was asked to stop before admission
    1 - configuration error or fatal failure (FATAL reported)

Usage:
    BOT_DATA='{"id": "...", "meetingInfo": {"meetingUrl": "..."}}' python -m meet_recorder
    python -m meet_recorder --config bot.yaml -v
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from meet_recorder.config import BotConfig, load_config
from meet_recorder.errors import ConfigError, FatalError
from meet_recorder.events import EventCode, ObservationChannel
from meet_recorder.meet import GoogleMeetAdapter
from meet_recorder.session import MeetingSession, TerminationReason
from meet_recorder.surface import AutomationSurface, PlaywrightSurface
from meet_recorder.telemetry import TelemetryReporter, create_reporter

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Join a Google Meet call, record it, and leave automatically",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML bot config (defaults to the BOT_DATA environment variable)",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run the browser headless (no screen capture possible)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Save page snapshots and log network traffic",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    return parser


def _install_signal_handlers(session: MeetingSession) -> None:
    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info(f"Received signal {sig.name}")
        session.request_leave()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler, sig)


def _remove_signal_handlers() -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.remove_signal_handler(sig)


async def run_bot(
    config: BotConfig,
    reporter: TelemetryReporter,
    surface: Optional[AutomationSurface] = None,
    headless: bool = False,
    handle_signals: bool = True,
) -> int:
    """Run one session and report its outcome. Returns the process exit code."""
    await reporter.report(EventCode.READY_TO_DEPLOY)

    if surface is None:
        surface = PlaywrightSurface(
            headless=headless,
            requires_people_panel=config.requires_people_panel,
            debug=config.debug,
        )
    adapter = GoogleMeetAdapter(surface, ObservationChannel(), debug=config.debug)
    session = MeetingSession(config, adapter, reporter)

    if handle_signals:
        _install_signal_handlers(session)
    try:
        outcome = await session.run()
    except FatalError as e:
        logger.error(f"Error running bot: {e}")
        await reporter.report(EventCode.FATAL, {"description": str(e), "code": e.code})
        return 1
    finally:
        if handle_signals:
            _remove_signal_handlers()

    if outcome is TerminationReason.NOT_ADMITTED:
        return 0
    if not session.admitted:
        logger.info("Left before admission, no recording to report.")
        return 0

    artifact = session.artifact()
    logger.info(f"Speaker timeframes: {[tf.to_dict() for tf in artifact.speaker_timeframes]}")

    if outcome is TerminationReason.ERROR:
        reason = session.leave_reason.value if session.leave_reason else "unknown"
        await reporter.report(EventCode.FATAL, {"description": f"Session ended with an error ({reason})"})
        return 1

    if not artifact.path.exists():
        await reporter.report(EventCode.FATAL, {"description": f"Recording not found: {artifact.path}"})
        return 1

    payload = artifact.to_dict()
    if config.metadata:
        payload["metadata"] = config.metadata
    await reporter.report(EventCode.DONE, payload)
    logger.info("Bot execution completed.")
    return 0


async def main(args: Optional[list] = None) -> int:
    parser = create_argument_parser()
    parsed = parser.parse_args(args)

    configure_logging(verbose=parsed.verbose)
    load_dotenv()

    try:
        config = load_config(parsed.config)
    except ConfigError as e:
        logger.error(f"Invalid bot configuration: {e}")
        return 1

    if parsed.debug and not config.debug:
        config = dataclasses.replace(config, debug=True)
    config.ensure_directories()

    reporter = create_reporter(config.telemetry_url, config.bot_id)
    reporter.start_heartbeat(config.heartbeat_interval_ms)
    try:
        return await run_bot(config, reporter, headless=parsed.headless)
    finally:
        await reporter.close()
        logger.info("Heartbeat stopped.")


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))
