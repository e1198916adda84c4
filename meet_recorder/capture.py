"""
Capture Process Supervisor.

Owns the external ffmpeg recording process:
- Captures the virtual X display and the PulseAudio sink monitor
- Records the launch time, the epoch for diarization and max-duration
- Stops with SIGINT so ffmpeg finalizes the container, and waits for exit

At most one process runs per session. The supervisor is only driven from the
session's control flow, so the presence check in ``start()`` is enough.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Callable, Optional

from meet_recorder.config import CaptureSettings
from meet_recorder.errors import CaptureProcessError
from meet_recorder.events import wall_clock_ms

logger = logging.getLogger(__name__)


def build_ffmpeg_command(settings: CaptureSettings, output_path: Path) -> list[str]:
    """Build the fixed ffmpeg argument vector for ``output_path``."""
    return [
        settings.ffmpeg_cmd,
        "-thread_queue_size",
        str(settings.thread_queue_size),
        "-video_size",
        settings.video_size,
        "-framerate",
        str(settings.framerate),
        "-f",
        "x11grab",
        "-i",
        settings.display,
        "-thread_queue_size",
        str(settings.thread_queue_size),
        "-f",
        "pulse",
        "-i",
        settings.audio_source,
        "-c:v",
        settings.video_codec,
        "-preset",
        settings.preset,
        "-crf",
        str(settings.crf),
        "-c:a",
        settings.audio_codec,
        "-b:a",
        settings.audio_bitrate,
        "-vsync",
        "2",
        "-y",
        str(output_path),
    ]


class CaptureProcessSupervisor:
    """Starts and stops the single ffmpeg process of a session."""

    def __init__(
        self,
        settings: CaptureSettings,
        output_path: Path,
        clock: Callable[[], int] = wall_clock_ms,
    ):
        self.settings = settings
        self.output_path = Path(output_path)
        self._clock = clock
        self._process: Optional[asyncio.subprocess.Process] = None
        self._started_at: Optional[int] = None
        self._last_exit_code: Optional[int] = None

    @property
    def content_type(self) -> str:
        return self.settings.content_type

    @property
    def started_at(self) -> Optional[int]:
        """Wall-clock ms when ffmpeg was launched (the capture epoch)."""
        return self._started_at

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def holds_process(self) -> bool:
        """True between a successful ``start()`` and the matching ``stop()``."""
        return self._process is not None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def exited_unexpectedly(self) -> bool:
        """True if ffmpeg died while we still held its handle."""
        return self._process is not None and self._process.returncode is not None

    @property
    def last_exit_code(self) -> Optional[int]:
        return self._last_exit_code

    async def start(self) -> None:
        """Launch ffmpeg. No-op with a warning if a process is already held.

        Raises:
            CaptureProcessError: If ffmpeg cannot be spawned
        """
        if self._process is not None:
            logger.warning("Recording already started.")
            return

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        command = build_ffmpeg_command(self.settings, self.output_path)
        logger.info(f"Starting ffmpeg recording: {' '.join(command)}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise CaptureProcessError(f"ffmpeg not found at '{self.settings.ffmpeg_cmd}'") from e
        except OSError as e:
            raise CaptureProcessError(f"Failed to start ffmpeg: {e}") from e

        self._started_at = self._clock()
        self._last_exit_code = None
        logger.info(f"ffmpeg recording started (PID {self._process.pid}) -> {self.output_path}")

    async def stop(self) -> Optional[int]:
        """Stop ffmpeg gracefully and wait until it has exited.

        Returns:
            The process exit code, or None if nothing was running.
        """
        if self._process is None:
            logger.warning("No recording process to stop.")
            return None

        process = self._process
        pid = process.pid
        logger.info(f"Stopping ffmpeg recording (PID {pid})...")

        if process.returncode is None:
            try:
                # SIGINT lets ffmpeg write the trailer and close the file
                process.send_signal(signal.SIGINT)
            except ProcessLookupError:
                logger.debug(f"ffmpeg {pid} already gone")

        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"ffmpeg {pid} did not finalize within {self.settings.stop_timeout}s, killing...")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        finally:
            self._process = None

        self._last_exit_code = process.returncode
        logger.info(f"ffmpeg exited with code {process.returncode}. Recording saved to: {self.output_path}")
        return process.returncode
