"""Pytest configuration and shared fixtures."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

# Add project root
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from meet_recorder.config import AutomaticLeaveConfig, BotConfig  # noqa: E402
from meet_recorder.errors import SurfaceTimeoutError  # noqa: E402

T0 = 1_700_000_000_000


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingReporter:
    """Telemetry reporter that keeps every reported event."""

    def __init__(self):
        self.events: list[tuple[Any, Optional[dict]]] = []
        self.closed = False

    async def report(self, event, payload=None):
        self.events.append((event, payload))

    def start_heartbeat(self, interval_ms):
        pass

    async def close(self):
        self.closed = True

    def codes(self) -> list:
        return [event for event, _ in self.events]

    def payloads(self, code) -> list:
        return [payload for event, payload in self.events if event == code]


class FakeSurface:
    """In-memory automation surface.

    ``missing`` selectors time out on wait, ``present`` and ``visible``
    selectors answer the corresponding queries.
    """

    def __init__(self, requires_people_panel: bool = True):
        self.requires_people_panel = requires_people_panel
        self.missing: set[str] = set()
        self.present: set[str] = set()
        self.visible: set[str] = set()
        self.calls: list[tuple] = []
        self.exposed: dict[str, Any] = {}
        self.evaluated: list[tuple[str, Any]] = []
        self.html = "<html><body>meet</body></html>"
        self.open_error: Optional[Exception] = None
        self.closed = False

    async def open(self, url):
        self.calls.append(("open", url))
        if self.open_error:
            raise self.open_error

    async def is_present(self, selector):
        return selector in self.present

    async def is_visible(self, selector, timeout_ms=500):
        return selector in self.visible

    async def is_hidden(self, selector, timeout_ms=500):
        return selector not in self.visible

    async def click(self, selector, timeout_ms=None):
        self.calls.append(("click", selector, timeout_ms))

    async def fill(self, selector, text):
        self.calls.append(("fill", selector, text))

    async def wait_for_selector(self, selector, timeout_ms, state="visible"):
        self.calls.append(("wait", selector, timeout_ms))
        if selector in self.missing:
            raise SurfaceTimeoutError(f"wait for {selector} timed out")

    async def evaluate(self, script, arg=None):
        self.evaluated.append((script, arg))
        return True

    async def expose_function(self, name, callback):
        self.exposed[name] = callback

    async def content(self):
        return self.html

    async def close(self):
        self.closed = True


class FakeSupervisor:
    """Capture supervisor stand-in that never spawns a process."""

    content_type = "video/mp4"

    def __init__(self, output_path: Path, clock: FakeClock, fail_start: Optional[Exception] = None):
        self.output_path = output_path
        self._clock = clock
        self.fail_start = fail_start
        self.started_at: Optional[int] = None
        self.holds_process = False
        self.exited_unexpectedly = False
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self):
        self.start_calls += 1
        if self.fail_start:
            raise self.fail_start
        self.started_at = self._clock()
        self.holds_process = True

    async def stop(self):
        self.stop_calls += 1
        self.holds_process = False
        self.output_path.write_bytes(b"\x00")
        return 0


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process``."""

    def __init__(self, pid: int = 4242, exit_on_sigint: bool = True):
        self.pid = pid
        self.returncode: Optional[int] = None
        self.exit_on_sigint = exit_on_sigint
        self.signals: list[int] = []
        self.killed = False
        self._exited = asyncio.Event()

    def send_signal(self, sig):
        self.signals.append(sig)
        if self.exit_on_sigint:
            self.finish(255)

    def kill(self):
        self.killed = True
        self.finish(-9)

    def finish(self, code: int):
        self.returncode = code
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll ``predicate`` until it is true or ``timeout`` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def bot_config(tmp_path):
    """A valid bot config writing recordings under tmp_path."""
    return BotConfig(
        bot_id="bot-123",
        meeting_url="https://meet.google.com/abc-defg-hij",
        automatic_leave=AutomaticLeaveConfig(),
        recordings_dir=tmp_path / "recordings",
    )


@pytest.fixture
def supervisor(tmp_path, clock):
    return FakeSupervisor(tmp_path / "bot-123.mp4", clock)


@pytest.fixture
def fake_process():
    return FakeProcess()


@pytest.fixture
def waiter():
    return wait_until


@pytest.fixture
def tile_surface():
    """Surface whose participants are read from tiles instead of the People panel."""
    return FakeSurface(requires_people_panel=False)
