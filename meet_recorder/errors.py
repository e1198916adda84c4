"""Error taxonomy for the recording bot.

Every failure the session can surface derives from ``MeetingBotError`` and
carries a stable ``code`` so the entry point can decide the process outcome
without string matching.

Usage:
    from meet_recorder.errors import AdmissionTimeout, FatalError

    try:
        await session.run()
    except FatalError as e:
        await reporter.report(EventCode.FATAL, {"description": str(e), "code": e.code})
"""

from typing import Optional


class ErrorCodes:
    """Standard error codes attached to bot errors."""

    CONFIG_INVALID = "CONFIG_INVALID"
    NOT_ADMITTED = "NOT_ADMITTED"
    SURFACE_FAILED = "SURFACE_FAILED"
    BROWSER_CLOSED = "BROWSER_CLOSED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    OBSERVATION_CONFLICT = "OBSERVATION_CONFLICT"
    FATAL = "FATAL"


class MeetingBotError(Exception):
    """Base class for all recording bot errors."""

    code = ErrorCodes.FATAL

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class ConfigError(MeetingBotError):
    """Raised when the bot configuration is missing or invalid."""

    code = ErrorCodes.CONFIG_INVALID


class AdmissionTimeout(MeetingBotError):
    """The waiting-room deadline passed without the bot being admitted.

    Terminal but not fatal: callers must not retry.
    """

    code = ErrorCodes.NOT_ADMITTED


class AutomationSurfaceError(MeetingBotError):
    """A remote-surface operation (query, click, evaluate) failed."""

    code = ErrorCodes.SURFACE_FAILED


class SurfaceTimeoutError(AutomationSurfaceError):
    """A wait on the remote surface ran past its deadline."""


class BrowserClosedError(AutomationSurfaceError):
    """Raised when the browser has been closed unexpectedly."""

    code = ErrorCodes.BROWSER_CLOSED


class CaptureProcessError(MeetingBotError):
    """The capture subprocess failed to start or exited unexpectedly."""

    code = ErrorCodes.CAPTURE_FAILED


class ObservationDisciplineError(MeetingBotError):
    """An observation source mixed incremental and snapshot updates."""

    code = ErrorCodes.OBSERVATION_CONFLICT


class FatalError(MeetingBotError):
    """Unrecoverable failure while joining the meeting."""

    code = ErrorCodes.FATAL


# Messages Playwright uses when the page, context or browser went away
BROWSER_CLOSED_PATTERNS = (
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
)


def is_browser_closed_error(error: BaseException) -> bool:
    """Check whether an exception means the browser is gone."""
    if isinstance(error, BrowserClosedError):
        return True
    message = str(error)
    return any(pattern in message for pattern in BROWSER_CLOSED_PATTERNS)
