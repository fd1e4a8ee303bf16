"""ffmpeg / ffprobe subprocess adapter."""

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import ValidationError

from rtmp_monitor.domain.errors import ProbeFailed, SubprocessSpawnFailed
from rtmp_monitor.domain.metrics import ProbeResult
from rtmp_monitor.domain.sessions import ProcessHandle

_logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 20
_STDERR_CHUNK_SIZE = 4096
_STDERR_LINE_LIMIT = 4096


class MediaTool(Protocol):
    """Interface for the external media utility."""

    async def probe(self, source_url: str) -> ProbeResult:
        """Describe the elementary streams of a source."""

    async def spawn(self, args: list[str], label: str) -> ProcessHandle:
        """Start an ffmpeg process with the given arguments."""


def recording_args(source_url: str, target: str) -> list[str]:
    """Copy a live source into an MPEG-TS file without re-encoding."""
    return [
        "-i",
        source_url,
        "-c",
        "copy",
        "-f",
        "mpegts",
        "-muxdelay",
        "0",
        "-y",
        target,
    ]


def forward_args(source_url: str, output_url: str, threads: int) -> list[str]:
    """Relay a live source to an RTMP endpoint with low-latency input flags."""
    return [
        "-re",
        "-fflags",
        "nobuffer",
        "-flags",
        "low_delay",
        "-i",
        source_url,
        "-c",
        "copy",
        "-f",
        "flv",
        "-flvflags",
        "no_duration_filesize",
        "-threads",
        str(threads),
        output_url,
    ]


def pull_url(pull_base: str, stream_path: str) -> str:
    """Return the local ingest URL for a stream path."""
    return f"{pull_base.rstrip('/')}/{stream_path.lstrip('/')}"


@dataclass
class FfmpegProcess:
    """asyncio subprocess wrapper that keeps a tail of stderr."""

    process: asyncio.subprocess.Process
    label: str
    stderr_lines: deque[str] = field(
        default_factory=lambda: deque(maxlen=_STDERR_TAIL_LINES)
    )
    _reader: asyncio.Task[None] | None = None

    def __post_init__(self) -> None:
        if self.process.stderr is not None:
            self._reader = asyncio.create_task(
                self._read_stderr(self.process.stderr)
            )

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    async def wait(self) -> int:
        returncode = await self.process.wait()
        if self._reader is not None:
            try:
                await asyncio.shield(self._reader)
            except Exception:
                _logger.exception("Failed to read stderr of ffmpeg %s", self.label)
        return returncode

    def terminate(self) -> None:
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    def stderr_tail(self) -> str:
        return "\n".join(self.stderr_lines)

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        """Collect stderr lines, cutting any line longer than the limit."""
        pending = b""
        while True:
            chunk = await stream.read(_STDERR_CHUNK_SIZE)
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b"\n")
            for line in lines:
                self._remember(line)
            pending = pending[:_STDERR_LINE_LIMIT]
        if pending:
            self._remember(pending)

    def _remember(self, line: bytes) -> None:
        text = line[:_STDERR_LINE_LIMIT].decode(errors="replace").rstrip()
        if text:
            self.stderr_lines.append(text)
            _logger.debug("ffmpeg:%s %s", self.label, text)


@dataclass
class FfmpegMediaTool(MediaTool):
    """MediaTool backed by the ffmpeg and ffprobe executables."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout: float = 10.0

    async def probe(self, source_url: str) -> ProbeResult:
        """Run ffprobe and parse its JSON description of the source."""
        cmd = [
            self.ffprobe_path,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_streams",
            "-show_format",
            source_url,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProbeFailed(f"Could not start ffprobe: {exc}") from exc
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.probe_timeout
            )
        except TimeoutError as exc:
            raise ProbeFailed(f"ffprobe timed out for {source_url}") from exc
        finally:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise ProbeFailed(
                f"ffprobe exited with code {process.returncode}: {detail}"
            )
        try:
            return ProbeResult.model_validate(json.loads(stdout.decode()))
        except (ValueError, ValidationError) as exc:
            raise ProbeFailed(f"Unreadable ffprobe output: {exc}") from exc

    async def spawn(self, args: list[str], label: str) -> ProcessHandle:
        """Start ffmpeg detached from stdin with stderr captured."""
        cmd = [self.ffmpeg_path, "-hide_banner", "-nostdin", "-loglevel", "error"]
        cmd.extend(args)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SubprocessSpawnFailed(f"Could not start ffmpeg: {exc}") from exc
        _logger.info("Started ffmpeg %s (pid=%s)", label, process.pid)
        return FfmpegProcess(process=process, label=label)


async def stop_process(process: ProcessHandle, timeout: float) -> None:
    """Terminate a process, escalating to kill after ``timeout`` seconds."""
    if process.returncode is not None:
        return
    process.terminate()
    try:
        await asyncio.wait_for(asyncio.shield(process.wait()), timeout=timeout)
    except TimeoutError:
        _logger.warning("Process did not exit after %.1fs, killing it", timeout)
        process.kill()
        await process.wait()
