"""Tests for meet_recorder/capture.py - ffmpeg process supervision."""

import signal
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from meet_recorder.capture import CaptureProcessSupervisor, build_ffmpeg_command
from meet_recorder.config import CaptureSettings
from meet_recorder.errors import CaptureProcessError

SPAWN = "meet_recorder.capture.asyncio.create_subprocess_exec"


@pytest.fixture
def output_path(tmp_path):
    return tmp_path / "recordings" / "bot-123.mp4"


@pytest.fixture
def capture(output_path, clock):
    return CaptureProcessSupervisor(CaptureSettings(stop_timeout=0.05), output_path, clock=clock)


# ==================== Command line ====================


class TestBuildFfmpegCommand:
    def test_default_command(self):
        command = build_ffmpeg_command(CaptureSettings(), Path("/tmp/out.mp4"))
        assert command == [
            "ffmpeg",
            "-thread_queue_size", "512",
            "-video_size", "1280x720",
            "-framerate", "15",
            "-f", "x11grab",
            "-i", ":99.0",
            "-thread_queue_size", "512",
            "-f", "pulse",
            "-i", "VirtualSink.monitor",
            "-c:v", "libx264",
            "-preset", "medium",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
            "-vsync", "2",
            "-y", "/tmp/out.mp4",
        ]  # fmt: skip

    def test_overrides(self):
        settings = CaptureSettings(ffmpeg_cmd="/usr/local/bin/ffmpeg", display=":1.0", framerate=30)
        command = build_ffmpeg_command(settings, Path("/rec/x.mp4"))
        assert command[0] == "/usr/local/bin/ffmpeg"
        assert command[command.index("x11grab") + 2] == ":1.0"
        assert command[command.index("-framerate") + 1] == "30"
        assert command[-1] == "/rec/x.mp4"


# ==================== start ====================


class TestStart:
    @pytest.mark.asyncio
    async def test_start_spawns_and_records_epoch(self, capture, fake_process, output_path, clock):
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)) as spawn:
            await capture.start()

        spawn.assert_awaited_once()
        args = spawn.await_args.args
        assert args[0] == "ffmpeg"
        assert args[-1] == str(output_path)
        assert output_path.parent.is_dir()
        assert capture.started_at == clock.now
        assert capture.pid == 4242
        assert capture.holds_process is True
        assert capture.is_running is True
        assert capture.exited_unexpectedly is False

    @pytest.mark.asyncio
    async def test_second_start_is_noop(self, capture, fake_process, caplog):
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)) as spawn:
            await capture.start()
            await capture.start()

        assert spawn.await_count == 1
        assert "Recording already started." in caplog.text

    @pytest.mark.asyncio
    async def test_missing_binary(self, capture):
        with patch(SPAWN, new=AsyncMock(side_effect=FileNotFoundError("ffmpeg"))):
            with pytest.raises(CaptureProcessError, match="ffmpeg not found"):
                await capture.start()

        assert capture.holds_process is False
        assert capture.started_at is None

    @pytest.mark.asyncio
    async def test_spawn_os_error(self, capture):
        with patch(SPAWN, new=AsyncMock(side_effect=PermissionError("denied"))):
            with pytest.raises(CaptureProcessError, match="Failed to start ffmpeg"):
                await capture.start()

    @pytest.mark.asyncio
    async def test_exited_unexpectedly(self, capture, fake_process):
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)):
            await capture.start()

        fake_process.finish(1)
        assert capture.is_running is False
        assert capture.exited_unexpectedly is True


# ==================== stop ====================


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_without_start(self, capture, caplog):
        assert await capture.stop() is None
        assert "No recording process to stop." in caplog.text

    @pytest.mark.asyncio
    async def test_stop_sends_sigint_and_waits(self, capture, fake_process):
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)):
            await capture.start()

        code = await capture.stop()

        assert fake_process.signals == [signal.SIGINT]
        assert fake_process.killed is False
        assert code == 255
        assert capture.last_exit_code == 255
        assert capture.holds_process is False
        assert capture.exited_unexpectedly is False

    @pytest.mark.asyncio
    async def test_stop_kills_after_timeout(self, capture, fake_process):
        fake_process.exit_on_sigint = False
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)):
            await capture.start()

        code = await capture.stop()

        assert fake_process.signals == [signal.SIGINT]
        assert fake_process.killed is True
        assert code == -9
        assert capture.holds_process is False

    @pytest.mark.asyncio
    async def test_stop_after_process_died(self, capture, fake_process):
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)):
            await capture.start()
        fake_process.finish(1)

        assert await capture.stop() == 1
        # Already exited: no signal sent
        assert fake_process.signals == []

    @pytest.mark.asyncio
    async def test_second_stop_is_noop(self, capture, fake_process):
        with patch(SPAWN, new=AsyncMock(return_value=fake_process)):
            await capture.start()
        await capture.stop()
        assert await capture.stop() is None
        assert fake_process.signals == [signal.SIGINT]

