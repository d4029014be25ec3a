# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
import re
import shlex
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from ..config import Config
from ..utils.ffmpeg import get_ffmpeg_exe_path
from ..utils.fields import FALLBACK_RESOLUTION, RESOLUTIONS
from .exceptions import TranscoderSpawnError, TranscoderWriteError
from .session import SessionConfig


ExitCallback = Callable[[int], Awaitable[None]]
DiagnosticCallback = Callable[[str], Awaitable[None]]

_LINE_SPLIT = re.compile(rb"[\r\n]")
_READ_CHUNK = 4096
_STDERR_DRAIN_S = 1.0


def is_error_line(line: str) -> bool:
    """Heuristic for FFmpeg diagnostics that should reach the client."""
    return "error" in line.lower()


def _kbps(value: float) -> str:
    # 2500 * 1.2 -> "3000k", 333 * 1.2 -> "399.6k"
    return f"{value:.2f}".rstrip("0").rstrip(".") + "k"


@dataclass(frozen=True)
class TranscoderSettings:
    """Server-side knobs for transcoder invocation (not client controlled)."""

    command: tuple[str, ...]
    loglevel: str = "warning"
    preset: str = "veryfast"
    audio_bitrate: str = "128k"
    audio_rate: int = 44100
    stop_timeout_s: float = 3.0
    write_timeout_s: float = 10.0
    stderr_tail_lines: int = 20

    @classmethod
    def from_config(cls, config: Config | None = None) -> "TranscoderSettings":
        config = config or Config()

        command = config.get("transcoder.command")
        if command:
            command = tuple(shlex.split(command)) if isinstance(command, str) else tuple(str(c) for c in command)
        else:
            exe = get_ffmpeg_exe_path(config.get("transcoder.ffmpeg_path"))
            command = (exe,) if exe else ()
            if not exe:
                logging.getLogger("transcoder").warning("ffmpeg not found; sessions will fail to start")

        return cls(
            command=command,
            loglevel=str(config.get("transcoder.loglevel")),
            preset=str(config.get("transcoder.preset")),
            audio_bitrate=str(config.get("transcoder.audio_bitrate")),
            audio_rate=int(config.get("transcoder.audio_rate")),
            stop_timeout_s=float(config.get("transcoder.stop_timeout_s")),
            write_timeout_s=float(config.get("relay.write_timeout_s")),
            stderr_tail_lines=int(config.get("transcoder.stderr_tail_lines")),
        )


def build_ffmpeg_args(config: SessionConfig, settings: TranscoderSettings) -> list[str]:
    """FFmpeg arguments turning a WebM/Matroska stdin stream into FLV over RTMP."""
    size = RESOLUTIONS.get(config.resolution, RESOLUTIONS[FALLBACK_RESOLUTION])

    return [
        "-hide_banner",
        "-loglevel", settings.loglevel,
        "-i", "pipe:0",
        "-c:v", "libx264",
        "-preset", settings.preset,
        "-tune", "zerolatency",
        "-c:a", "aac",
        "-b:a", settings.audio_bitrate,
        "-ar", str(settings.audio_rate),
        "-s", size,
        "-r", str(config.fps),
        "-b:v", f"{config.bitrate}k",
        "-maxrate", _kbps(config.bitrate * 1.2),
        "-bufsize", _kbps(config.bitrate * 2),
        "-pix_fmt", "yuv420p",
        "-g", str(config.fps * 2),
        "-f", "flv",
        config.destination,
    ]


class TranscoderProcess:
    """One external transcoder process fed through its stdin.

    Lifecycle: ``start()`` spawns, ``watch()`` begins stderr monitoring and
    exit supervision, ``write()`` feeds media, ``stop()`` terminates. The exit
    callback fires exactly once per process, including when ``stop()`` is
    what ended it.
    """

    def __init__(self, config: SessionConfig, settings: TranscoderSettings, *, label: str = ""):
        self.config = config
        self.settings = settings
        self.label = label
        self.process: Optional[asyncio.subprocess.Process] = None
        self.stderr_tail: deque[str] = deque(maxlen=settings.stderr_tail_lines)

        self._stderr_task: Optional[asyncio.Task] = None
        self._wait_task: Optional[asyncio.Task] = None
        self._exit_notified = False

    def __repr__(self):
        return f"TranscoderProcess(label={self.label}, pid={self.pid}, returncode={self.returncode})"

    @property
    def args(self) -> list[str]:
        return build_ffmpeg_args(self.config, self.settings)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process else None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def writable(self) -> bool:
        if not self.running or self.process.stdin is None:
            return False
        return not self.process.stdin.is_closing()

    def in_exit_callback(self) -> bool:
        """True when called from inside the exit notification."""
        return self._wait_task is not None and asyncio.current_task() is self._wait_task

    async def start(self) -> None:
        if self.process is not None:
            raise RuntimeError(f"{self.label} transcoder already started")
        if not self.settings.command:
            raise TranscoderSpawnError("ffmpeg executable not found")

        args = self.args
        cmd = [*self.settings.command, *args]
        shown = [*self.settings.command, *args[:-1], self.config.redacted_destination]
        logging.getLogger("transcoder").info(f"[{self.label}] starting: {shlex.join(shown)}")

        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise TranscoderSpawnError(f"cannot start {cmd[0]}: {e}") from e

        logging.getLogger("transcoder").info(f"[{self.label}] started pid={self.process.pid}")

    def watch(self, on_exit: ExitCallback, on_diagnostic_error: DiagnosticCallback | None = None) -> None:
        """Start stderr monitoring and exit supervision."""
        if self.process is None:
            raise RuntimeError(f"{self.label} transcoder not started")
        if self._wait_task is not None:
            return
        self._stderr_task = asyncio.create_task(
            self._read_stderr(on_diagnostic_error), name=f"transcoder-stderr-{self.label}"
        )
        self._wait_task = asyncio.create_task(self._wait(on_exit), name=f"transcoder-wait-{self.label}")

    async def write(self, data: bytes) -> bool:
        """Write one media chunk, waiting for the pipe to drain.

        Returns False (frame dropped) if the process can't take input any
        more; raises TranscoderWriteError if the pipe fails mid-write.
        """
        if not self.writable:
            return False

        stdin = self.process.stdin
        timeout = self.settings.write_timeout_s
        try:
            stdin.write(data)
            if timeout > 0:
                await asyncio.wait_for(stdin.drain(), timeout)
            else:
                await stdin.drain()
        except asyncio.TimeoutError as e:
            raise TranscoderWriteError(f"transcoder input stalled for {timeout:.1f}s") from e
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TranscoderWriteError(f"transcoder input closed: {e!r}") from e
        return True

    async def stop(self, timeout: float | None = None) -> Optional[int]:
        """Close input, terminate, then kill if needed. Returns the exit code."""
        proc = self.process
        if proc is None:
            return None

        log = logging.getLogger("transcoder")
        timeout = self.settings.stop_timeout_s if timeout is None else timeout

        if proc.stdin is not None and not proc.stdin.is_closing():
            with contextlib.suppress(OSError):
                proc.stdin.close()

        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout)
            except asyncio.TimeoutError:
                log.warning(f"[{self.label}] pid={proc.pid} ignored SIGTERM for {timeout:.1f}s, killing")
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        # Let the exit notification run unless we're already inside it
        if self._wait_task is not None and not self._exit_notified and not self.in_exit_callback():
            await asyncio.gather(self._wait_task, return_exceptions=True)

        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            await asyncio.gather(self._stderr_task, return_exceptions=True)

        return proc.returncode

    async def _read_stderr(self, on_diagnostic_error: DiagnosticCallback | None) -> None:
        stream = self.process.stderr
        if stream is None:
            return

        # FFmpeg ends progress lines with CR, so split on both
        pending = b""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            *lines, pending = _LINE_SPLIT.split(pending)
            for raw in lines:
                await self._handle_stderr_line(raw, on_diagnostic_error)
        if pending:
            await self._handle_stderr_line(pending, on_diagnostic_error)

    async def _handle_stderr_line(self, raw: bytes, on_diagnostic_error: DiagnosticCallback | None) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        self.stderr_tail.append(line)

        if not is_error_line(line):
            logging.getLogger("transcoder").debug(f"[{self.label}] ffmpeg: {line}")
            return

        logging.getLogger("transcoder").warning(f"[{self.label}] ffmpeg: {line}")
        if on_diagnostic_error is not None:
            try:
                await on_diagnostic_error(line)
            except Exception as e:
                logging.getLogger("transcoder").error(f"[{self.label}] diagnostic handler failed: {e!r}")

    async def _wait(self, on_exit: ExitCallback) -> None:
        returncode = await self.process.wait()

        # Give stderr a moment to hit EOF so diagnostics precede the exit event
        if self._stderr_task is not None:
            await asyncio.wait({self._stderr_task}, timeout=_STDERR_DRAIN_S)

        level = logging.INFO if returncode == 0 else logging.WARNING
        logging.getLogger("transcoder").log(level, f"[{self.label}] pid={self.process.pid} exited with code {returncode}")
        if returncode != 0 and self.stderr_tail:
            logging.getLogger("transcoder").debug(
                f"[{self.label}] last stderr lines:\n  " + "\n  ".join(self.stderr_tail)
            )

        if self._exit_notified:
            return
        self._exit_notified = True
        try:
            await on_exit(returncode)
        except Exception as e:
            logging.getLogger("transcoder").error(f"[{self.label}] exit handler failed: {e!r}")
